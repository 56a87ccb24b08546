from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from lms_telemetry.core.api_key import require_admin_key
from lms_telemetry.db.session import get_db
from lms_telemetry.schemas.analytics import DEFAULT_PAGE_SIZE, DEFAULT_SORT_FIELD, AnalyticsFilters
from lms_telemetry.services import analytics as analytics_service
from lms_telemetry.services import export as export_service
from lms_telemetry.utils.pagination import resolve_pagination

router = APIRouter(prefix='/analytics', tags=['analytics'], dependencies=[Depends(require_admin_key)])


def _build_filters(**values) -> AnalyticsFilters:
    """Normalize raw query-string values into ``AnalyticsFilters``.

    Out-of-range paging values are clamped rather than rejected, and an unknown
    ``sortOrder`` reads as ``desc``.
    """
    number, size, _ = resolve_pagination(values.pop('pageNumber', None), values.pop('limit', None))
    sort_order = (values.pop('sortOrder', None) or 'desc').lower()
    search = (values.pop('search', None) or '').strip() or None
    return AnalyticsFilters(
        **values,
        search=search,
        pageNumber=number,
        limit=size,
        sortOrder='asc' if sort_order == 'asc' else 'desc',
    )


def analytics_filters(
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    userId: Optional[int] = None,
    page: Optional[str] = None,
    interactionType: Optional[str] = None,
    courseId: Optional[int] = None,
    sectionId: Optional[int] = None,
) -> AnalyticsFilters:
    """Filters for the summary views; ``page`` is a page-path substring here."""
    return _build_filters(
        startDate=startDate,
        endDate=endDate,
        userId=userId,
        page=page,
        interactionType=interactionType,
        courseId=courseId,
        sectionId=sectionId,
    )


def query_filters(
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    userId: Optional[int] = None,
    courseId: Optional[int] = None,
    eventType: Optional[str] = None,
    pagePath: Optional[str] = None,
    search: Optional[str] = None,
    page: Optional[int] = None,
    limit: Optional[int] = None,
    sortBy: str = DEFAULT_SORT_FIELD,
    sortOrder: str = 'desc',
) -> AnalyticsFilters:
    """Filters for the record list and export; ``page`` is the 1-based result page here."""
    return _build_filters(
        startDate=startDate,
        endDate=endDate,
        userId=userId,
        courseId=courseId,
        interactionType=eventType,
        page=pagePath,
        search=search,
        pageNumber=page,
        limit=limit,
        sortBy=sortBy,
        sortOrder=sortOrder,
    )


@router.get('/interactions/summary')
def interactions_summary(filters: AnalyticsFilters = Depends(analytics_filters), db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'data': analytics_service.interaction_summary(db, filters)}


@router.get('/interactions/query')
def interactions_query(filters: AnalyticsFilters = Depends(query_filters), db: Session = Depends(get_db)) -> dict:
    """Paginated, searchable, sortable list of enriched interaction records."""
    return {'success': True, 'data': analytics_service.query_interactions(db, filters)}


@router.get('/interactions/filter-options')
def interactions_filter_options(db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'data': analytics_service.interaction_filter_options(db)}


@router.get('/interactions/timeseries')
def interactions_timeseries(
    bucket: Literal['day', 'hour'] = 'day',
    filters: AnalyticsFilters = Depends(analytics_filters),
    db: Session = Depends(get_db),
) -> dict:
    return {'success': True, 'data': analytics_service.interaction_timeseries(db, filters, bucket)}


@router.get('/interactions/export/csv', response_class=PlainTextResponse)
def interactions_export_csv(filters: AnalyticsFilters = Depends(query_filters), db: Session = Depends(get_db)):
    body = export_service.export_interactions_csv(db, filters)
    stamp = datetime.utcnow().strftime('%Y-%m-%d')
    return PlainTextResponse(
        body,
        media_type='text/csv; charset=utf-8',
        headers={'Content-Disposition': f'attachment; filename="interaction-logs-{stamp}.csv"'},
    )


@router.get('/chatbot/summary')
def chatbot_summary(filters: AnalyticsFilters = Depends(analytics_filters), db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'data': analytics_service.chatbot_summary(db, filters)}


@router.get('/chatbot/section/{section_id}')
def chatbot_section_logs(
    section_id: int,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    db: Session = Depends(get_db),
) -> dict:
    """Raw chat trail for one AI-tutor section; unknown sections give an empty page."""
    return {'success': True, 'data': analytics_service.chatbot_logs_for_section(db, section_id, page, limit)}


@router.get('/export/interactions')
def export_interactions(db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'data': export_service.export_recent_interactions(db)}


@router.get('/export/chatbot')
def export_chatbot(db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'data': export_service.export_recent_chatbot_logs(db)}
