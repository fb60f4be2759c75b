"""
Search pagination.

Clients page either with page/page_size or with cursor/limit, where the cursor
is the previous offset as a string. Both modes resolve to one descriptor so the
first page is identical either way. Out-of-range input is clamped, not rejected.
"""
from dataclasses import dataclass
from typing import Any, Optional, Sequence

DEFAULT_MAX_LIMIT = 80
DEFAULT_LIMIT = 24

MODE_PAGE = "page"
MODE_CURSOR = "cursor"


@dataclass(frozen=True)
class PaginationInput:
    page: Any = None
    page_size: Any = None
    cursor: Any = None
    limit: Any = None


@dataclass(frozen=True)
class PaginationDescriptor:
    mode: str
    limit: int
    offset: int
    cursor: str


@dataclass(frozen=True)
class PageResult:
    items: list
    total: int
    offset: int
    limit: int
    next_cursor: Optional[str]


def _to_int(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        return None


def _is_present(value) -> bool:
    return value is not None and str(value).strip() != ""


def _clamp_limit(value, default: int, max_limit: int) -> int:
    parsed = _to_int(value)
    if parsed is None:
        parsed = default
    return min(max(parsed, 1), max_limit)


def resolve_pagination(
        params: PaginationInput,
        max_limit: int = DEFAULT_MAX_LIMIT,
        default_limit: int = DEFAULT_LIMIT,
) -> PaginationDescriptor:
    max_limit = max(1, int(max_limit))
    default_limit = min(max(1, int(default_limit)), max_limit)

    if _is_present(params.cursor) or _is_present(params.limit):
        limit = _clamp_limit(params.limit, default_limit, max_limit)
        offset = max(0, _to_int(params.cursor) or 0)
        return PaginationDescriptor(mode=MODE_CURSOR, limit=limit, offset=offset, cursor=str(offset))

    limit = _clamp_limit(params.page_size, default_limit, max_limit)
    page = max(1, _to_int(params.page) or 1)
    offset = (page - 1) * limit
    return PaginationDescriptor(mode=MODE_PAGE, limit=limit, offset=offset, cursor=str(offset))


def paginate(rows: Sequence, descriptor: PaginationDescriptor) -> PageResult:
    total = len(rows)
    items = list(rows[descriptor.offset:descriptor.offset + descriptor.limit])
    end = descriptor.offset + len(items)
    return PageResult(
        items=items,
        total=total,
        offset=descriptor.offset,
        limit=descriptor.limit,
        next_cursor=None if end >= total else str(end),
    )


def paginate_search_results(
        rows: Sequence,
        params: PaginationInput,
        max_limit: int = DEFAULT_MAX_LIMIT,
        default_limit: int = DEFAULT_LIMIT,
) -> PageResult:
    return paginate(rows, resolve_pagination(params, max_limit, default_limit))
