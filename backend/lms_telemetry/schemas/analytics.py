from __future__ import annotations
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100

# Columns an operator may sort by. Anything else falls back to ``timestamp``
# so the query never orders by an arbitrary column name from the URL.
SORTABLE_FIELDS: dict[str, str] = {
    'timestamp': 'timestamp',
    'userFullname': 'user_fullname',
    'eventType': 'event_type',
    'pagePath': 'page_path',
    'courseTitle': 'course_title',
    'deviceType': 'device_type',
    'browserName': 'browser_name',
    'scrollDepth': 'scroll_depth',
    'timeOnPage': 'time_on_page',
}
DEFAULT_SORT_FIELD = 'timestamp'


class AnalyticsFilters(BaseModel):
    """Filter/sort/page options shared by the summary, query and export views.

    ``page`` is the page-path substring filter used by the summary; ``pageNumber``
    is the 1-based result page for the paginated query.
    """
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    userId: Optional[int] = None
    page: Optional[str] = None
    interactionType: Optional[str] = None
    courseId: Optional[int] = None
    sectionId: Optional[int] = None
    search: Optional[str] = None
    pageNumber: int = Field(default=1, ge=1)
    limit: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)
    sortBy: str = DEFAULT_SORT_FIELD
    sortOrder: Literal['asc', 'desc'] = 'desc'

    def sort_column(self) -> str:
        return SORTABLE_FIELDS.get(self.sortBy, SORTABLE_FIELDS[DEFAULT_SORT_FIELD])


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int
