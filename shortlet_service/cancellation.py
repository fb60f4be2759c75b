import datetime
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class CancellationPolicy(str, Enum):
    FLEXIBLE_24H = "flexible_24h"
    FLEXIBLE_48H = "flexible_48h"
    MODERATE_5D = "moderate_5d"
    STRICT = "strict"


DEFAULT_POLICY = CancellationPolicy.FLEXIBLE_48H

POLICY_LABELS = {
    CancellationPolicy.FLEXIBLE_24H: "Free cancellation until 24 hours before check-in",
    CancellationPolicy.FLEXIBLE_48H: "Free cancellation until 48 hours before check-in",
    CancellationPolicy.MODERATE_5D: "Free cancellation until 5 days before check-in",
    CancellationPolicy.STRICT: "Non-refundable after booking is confirmed",
}

# Hours before check-in during which a guest can still cancel for free
FREE_WINDOW_HOURS = {
    CancellationPolicy.FLEXIBLE_24H: 24,
    CancellationPolicy.FLEXIBLE_48H: 48,
    CancellationPolicy.MODERATE_5D: 5 * 24,
    CancellationPolicy.STRICT: None,
}


@dataclass(frozen=True)
class CancellationTerms:
    policy: CancellationPolicy
    label: str
    free_cancellation: bool
    free_window_hours: Optional[int]


def resolve_policy(settings) -> CancellationPolicy:
    """
    Picks the policy out of a settings object, a mapping or a bare value.
    Missing or unknown values fall back to flexible_48h; this never raises.
    """
    if settings is None:
        return DEFAULT_POLICY
    if isinstance(settings, CancellationPolicy):
        return settings
    if isinstance(settings, str):
        raw = settings
    elif isinstance(settings, dict):
        raw = settings.get("cancellation_policy")
    else:
        raw = getattr(settings, "cancellation_policy", None)
    try:
        return CancellationPolicy(str(raw or "").strip().lower())
    except ValueError:
        return DEFAULT_POLICY


def is_free_policy(policy) -> bool:
    return resolve_policy(policy) != CancellationPolicy.STRICT


def policy_label(policy) -> str:
    return POLICY_LABELS[resolve_policy(policy)]


def cancellation_terms(policy) -> CancellationTerms:
    resolved = resolve_policy(policy)
    return CancellationTerms(
        policy=resolved,
        label=POLICY_LABELS[resolved],
        free_cancellation=resolved != CancellationPolicy.STRICT,
        free_window_hours=FREE_WINDOW_HOURS[resolved],
    )


def free_cancellation_deadline(policy, check_in: datetime.date) -> Optional[datetime.datetime]:
    """Last moment (UTC, check-in at midnight) a guest can cancel for free."""
    hours = FREE_WINDOW_HOURS[resolve_policy(policy)]
    if hours is None:
        return None
    start = datetime.datetime.combine(check_in, datetime.time.min)
    return start - datetime.timedelta(hours=hours)
