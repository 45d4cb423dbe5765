from dataclasses import dataclass

from fastapi import Query

from config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


NEWEST_FIRST = [("createdAt", -1), ("_id", -1)]


@dataclass(frozen=True)
class Page:
    limit: int
    offset: int


def pagination(
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
) -> Page:
    """limit/offset query parameters as a bounded page"""
    return Page(limit=limit, offset=offset)


async def paginate(collection, match: dict, page: Page, sort=None, projection=None):
    """Return (items, total) where total counts every match, not just this page"""
    total = await collection.count_documents(match)
    cursor = collection.find(match, projection)
    if sort:
        cursor = cursor.sort(sort)
    items = await cursor.skip(page.offset).limit(page.limit).to_list(None)
    return items, total
