import asyncio
import json
import logging
from typing import Optional
from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaConnectionError
from sqlalchemy.orm import Session
from sqlalchemy.sql import select

from .database import SessionLocal
from .models import OutboxEvent
from .config import settings

logger = logging.getLogger("outbox_poller")

BATCH_SIZE = 100


def _partition_key(payload: str) -> Optional[bytes]:
    """Events for one property share a key so consumers see them in order."""
    try:
        property_id = json.loads(payload).get("property_id")
    except (ValueError, AttributeError):
        return None
    return str(property_id).encode("utf-8") if property_id is not None else None


async def publish_pending_events(db: Session, producer, batch_size: int = BATCH_SIZE) -> int:
    """
    Sends one batch of pending availability events, oldest first.
    Sent events are deleted; failed ones stay PENDING and are retried next round.
    """
    stmt = select(OutboxEvent).where(
        OutboxEvent.status == "PENDING"
    ).order_by(OutboxEvent.id).limit(batch_size).with_for_update()
    pending_events = db.execute(stmt).scalars().all()
    if not pending_events:
        return 0

    logger.info(f"Found {len(pending_events)} pending availability events in outbox.")
    sent = 0
    for event in pending_events:
        try:
            await producer.send_and_wait(
                topic=event.topic,
                key=_partition_key(event.payload),
                value=event.payload.encode("utf-8"),
            )
        except Exception as e:
            logger.error(f"Failed to send outbox event {event.id} to Kafka: {e}")
            # Later events for the same property must not overtake this one
            break
        db.delete(event)
        sent += 1

    if sent > 0:
        db.commit()
        logger.info(f"Published {sent} availability events.")
    return sent


async def _start_producer(retry_delay: int, max_retries: int) -> Optional[AIOKafkaProducer]:
    for attempt in range(1, max_retries + 1):
        producer = AIOKafkaProducer(bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS)
        try:
            await producer.start()
            logger.info(f"Outbox poller connected to Kafka on attempt {attempt}.")
            return producer
        except KafkaConnectionError as e:
            logger.warning(
                f"Kafka connection attempt {attempt}/{max_retries} failed: {e}. "
                f"Retrying in {retry_delay} seconds..."
            )
            await producer.stop()
            if attempt < max_retries:
                await asyncio.sleep(retry_delay)
        except Exception as e:
            logger.error(f"Unexpected error starting Kafka producer: {e}")
            await producer.stop()
            return None

    logger.error("Outbox poller failed to connect to Kafka after multiple retries. Exiting.")
    return None


async def run_outbox_poller(poll_interval: int = 5, retry_delay: int = 5, max_retries: int = 5):
    """
    Continuously ships pending outbox events to Kafka.
    """
    logger.info("Starting outbox poller...")
    producer = await _start_producer(retry_delay, max_retries)
    if producer is None:
        return

    try:
        while True:
            db: Session = SessionLocal()
            try:
                await publish_pending_events(db, producer)
            except Exception as e:
                logger.error(f"Error in poller loop: {e}")
                db.rollback()
            finally:
                db.close()

            await asyncio.sleep(poll_interval)

    except asyncio.CancelledError:
        logger.info("Outbox poller task cancelled.")
    finally:
        logger.info("Stopping Kafka producer...")
        await producer.stop()
        logger.info("Outbox poller shut down.")
