import datetime
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import Optional

from .. import schemas, crud, service
from ..cancellation import cancellation_terms
from ..config import Settings
from ..database import get_db
from ..dependencies import get_settings, read_rate_limit
from ..pagination import PaginationInput
from ..search import filter_free_cancellation, parse_sort, sort_search_results, unavailable_property_ids

logger = logging.getLogger("shortlet_service")

# Registered before shortlet_router so /shortlets/search is not read as a property id
router = APIRouter(prefix="/shortlets", tags=["Search"])


@router.get("/search", response_model=schemas.SearchPage)
def search_shortlets(
        check_in: Optional[datetime.date] = None,
        check_out: Optional[datetime.date] = None,
        sort: Optional[str] = None,
        free_cancellation: bool = False,
        page: Optional[str] = None,
        page_size: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: Optional[str] = None,
        db: Session = Depends(get_db),
        config: Settings = Depends(get_settings),
        rate_limit: None = Depends(read_rate_limit),
):
    """
    Bookable listings, optionally only those free for [check_in, check_out).
    Supports page/page_size and cursor/limit paging.
    """
    if (check_in is None) != (check_out is None):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="check_in and check_out must be given together",
        )
    if check_in is not None and check_in >= check_out:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Check-out must be after check-in.",
        )

    candidates = crud.list_search_candidates(db)
    if free_cancellation:
        candidates = filter_free_cancellation(candidates)

    if check_in is not None and candidates:
        # Widen back by the largest turnover so earlier checkouts are seen
        max_prep = max(listing.prep_days for listing in candidates)
        ranges = crud.list_unavailable_ranges_for_properties(
            db,
            [listing.property_id for listing in candidates],
            check_in - datetime.timedelta(days=max_prep),
            check_out,
        )
        taken = unavailable_property_ids(candidates, ranges, check_in, check_out)
        candidates = [listing for listing in candidates if listing.property_id not in taken]

    rows = sort_search_results(candidates, parse_sort(sort))
    params = PaginationInput(page=page, page_size=page_size, cursor=cursor, limit=limit)
    result = service.paginate_search_results(rows, params, config)
    mode = service.resolve_search_pagination(params, config).mode

    items = []
    for listing in result.items:
        terms = cancellation_terms(listing.cancellation_policy)
        total = None
        if check_in is not None:
            total = service.price_stay_for_listing(listing, check_in, check_out).total_amount_minor
        items.append(schemas.SearchResultItem(
            property_id=listing.property_id,
            booking_mode=listing.booking_mode,
            nightly_price_minor=listing.nightly_price_minor,
            currency=listing.currency,
            cancellation_policy=terms.policy.value,
            cancellation_label=terms.label,
            free_cancellation=terms.free_cancellation,
            min_nights=listing.min_nights,
            total_amount_minor=total,
        ))

    logger.info(f"Search returned {len(items)} of {result.total} listings.")
    return schemas.SearchPage(
        items=items,
        total=result.total,
        offset=result.offset,
        limit=result.limit,
        next_cursor=result.next_cursor,
        mode=mode,
    )
