"""
Pagination helper.

Runs a SelectQuery twice (count, then one page of rows) and wraps the
result in the Paginator envelope returned by list endpoints.
"""

from __future__ import annotations

import logging
import math
import sqlite3
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from manifest_back.runtime.query_builder import SelectQuery

logger = logging.getLogger("manifest_back.pagination")

T = TypeVar("T")

# perPage sentinel: every row, unpaginated
ALL_RESULTS = -1


class Paginator(BaseModel, Generic[T]):
    """
    One page of results.

    Serialised with camelCase keys:
    ``{data, currentPage, totalPages, totalItems, perPage}``.
    """

    data: list[T] = Field(default_factory=list)
    current_page: int = Field(alias="currentPage")
    total_pages: int = Field(alias="totalPages")
    total_items: int = Field(alias="totalItems")
    per_page: int = Field(alias="perPage")

    model_config = ConfigDict(populate_by_name=True)


def total_pages_for(total_items: int, per_page: int) -> int:
    """ceil(total / perPage), 0 when there are no items."""
    if total_items == 0 or per_page <= 0:
        return 0
    return math.ceil(total_items / per_page)


def paginate(
    conn: sqlite3.Connection,
    query: SelectQuery,
    current_page: int,
    results_per_page: int,
) -> Paginator[dict[str, Any]]:
    """
    Count the query's rows and fetch one page of them.

    Args:
        conn: Open connection
        query: Query to paginate (not modified)
        current_page: 1-based page number
        results_per_page: Page size, or -1 for every row

    Returns:
        Paginator whose data holds the raw row dicts
    """
    count_sql, count_params = query.build_count()
    total_items = conn.execute(count_sql, count_params).fetchone()[0]

    if results_per_page == ALL_RESULTS:
        page_query = query.paginated(limit=None)
    else:
        page_query = query.paginated(
            limit=results_per_page, offset=(current_page - 1) * results_per_page
        )

    sql, params = page_query.build_select()
    logger.debug("Paginated query: %s %s", sql, params)
    rows = [dict(row) for row in conn.execute(sql, params).fetchall()]

    if results_per_page == ALL_RESULTS:
        return Paginator(
            data=rows,
            current_page=1,
            total_pages=1 if total_items else 0,
            total_items=total_items,
            per_page=total_items,
        )

    return Paginator(
        data=rows,
        current_page=current_page,
        total_pages=total_pages_for(total_items, results_per_page),
        total_items=total_items,
        per_page=results_per_page,
    )
