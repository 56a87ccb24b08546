from __future__ import annotations
import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Iterable, Protocol

from sqlalchemy import ColumnElement, func, or_, select
from sqlalchemy.orm import Session

from lms_telemetry.models.interaction import ChatbotInteractionLog, UserInteraction, UserInteractionLog
from lms_telemetry.schemas.analytics import AnalyticsFilters, Pagination
from lms_telemetry.utils.pagination import resolve_pagination

_log = logging.getLogger(__name__)

RECENT_LIMIT = 100
TOP_PAGES = 20
TOP_COURSES = 10
TOP_USERS = 20
FILTER_OPTION_PAGES = 50

# Columns a free-text search is matched against (substring, OR'ed).
SEARCH_COLUMNS = (
    UserInteractionLog.user_email,
    UserInteractionLog.user_fullname,
    UserInteractionLog.page_path,
    UserInteractionLog.page_title,
    UserInteractionLog.course_title,
    UserInteractionLog.event_action,
    UserInteractionLog.element_text,
)


# ---------------------------------------------------------------------------
# filter helpers
# ---------------------------------------------------------------------------

def _date_conditions(column, filters: AnalyticsFilters) -> list[ColumnElement[bool]]:
    conds: list[ColumnElement[bool]] = []
    if filters.startDate is not None:
        conds.append(column >= _naive(filters.startDate))
    if filters.endDate is not None:
        conds.append(column <= _naive(filters.endDate))
    return conds


def _naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def interaction_conditions(
    filters: AnalyticsFilters,
    *,
    with_search: bool = True,
    search_columns: Iterable = SEARCH_COLUMNS,
) -> list[ColumnElement[bool]]:
    """WHERE clauses for ``user_interaction_logs`` from the shared filter object."""
    m = UserInteractionLog
    conds = _date_conditions(m.timestamp, filters)
    if filters.userId is not None:
        conds.append(m.user_id == filters.userId)
    if filters.page:
        conds.append(m.page_path.contains(filters.page, autoescape=True))
    if filters.interactionType:
        conds.append(m.event_type == filters.interactionType)
    if filters.courseId is not None:
        conds.append(m.course_id == filters.courseId)
    if filters.sectionId is not None:
        conds.append(m.section_id == filters.sectionId)
    if with_search and filters.search:
        term = filters.search
        conds.append(or_(*[col.contains(term, autoescape=True) for col in search_columns]))
    return conds


def chatbot_conditions(filters: AnalyticsFilters) -> list[ColumnElement[bool]]:
    m = ChatbotInteractionLog
    conds = _date_conditions(m.timestamp, filters)
    if filters.userId is not None:
        conds.append(m.user_id == filters.userId)
    if filters.sectionId is not None:
        conds.append(m.section_id == filters.sectionId)
    if filters.courseId is not None:
        conds.append(m.course_id == filters.courseId)
    return conds


def _grouped(db: Session, columns: Iterable, conds: list, *, limit: int | None = None) -> list[tuple]:
    cols = list(columns)
    count = func.count().label('count')
    stmt = select(*cols, count).where(*conds).group_by(*cols).order_by(count.desc(), *cols)
    if limit:
        stmt = stmt.limit(limit)
    return [tuple(r) for r in db.execute(stmt).all()]


def _parse_json_text(value: str | None) -> Any:
    if not value:
        return None
    try:
        return json.loads(value)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# serializers
# ---------------------------------------------------------------------------

def interaction_to_dict(i: UserInteractionLog) -> dict[str, Any]:
    return {
        'id': i.id,
        'timestamp': i.timestamp,
        'timestampMs': str(i.timestamp_ms) if i.timestamp_ms is not None else None,
        'sessionId': i.session_id,
        'sessionDuration': i.session_duration,
        'timeOnPage': i.time_on_page,
        'userId': i.user_id,
        'userFullname': i.user_fullname,
        'userEmail': i.user_email,
        'eventType': i.event_type,
        'eventCategory': i.event_category,
        'eventAction': i.event_action,
        'eventLabel': i.event_label,
        'eventValue': i.event_value,
        'eventSequence': i.event_sequence,
        'pagePath': i.page_path,
        'pageUrl': i.page_url,
        'pageTitle': i.page_title,
        'referrerUrl': i.referrer_url,
        'courseId': i.course_id,
        'courseTitle': i.course_title,
        'moduleId': i.module_id,
        'moduleTitle': i.module_title,
        'lectureId': i.lecture_id,
        'lectureTitle': i.lecture_title,
        'sectionId': i.section_id,
        'sectionTitle': i.section_title,
        'sectionType': i.section_type,
        'elementId': i.element_id,
        'elementType': i.element_type,
        'elementText': i.element_text,
        'elementHref': i.element_href,
        'elementClasses': i.element_classes,
        'elementName': i.element_name,
        'elementValue': i.element_value,
        'scrollDepth': i.scroll_depth,
        'viewportWidth': i.viewport_width,
        'viewportHeight': i.viewport_height,
        'deviceType': i.device_type,
        'browserName': i.browser_name,
        'browserVersion': i.browser_version,
        'osName': i.os_name,
        'osVersion': i.os_version,
        'screenWidth': i.screen_width,
        'screenHeight': i.screen_height,
        'language': i.language,
        'timezone': i.timezone,
        'ipAddress': i.ip_address,
        'userAgent': i.user_agent,
        'metadata': i.event_metadata,
        'testMode': i.test_mode,
    }


def chatbot_log_to_dict(log: ChatbotInteractionLog) -> dict[str, Any]:
    return {
        'id': log.id,
        'timestamp': log.timestamp,
        'timestampMs': str(log.timestamp_ms) if log.timestamp_ms is not None else None,
        'sessionId': log.session_id,
        'sessionDuration': log.session_duration,
        'userId': log.user_id,
        'userFullname': log.user_fullname,
        'userEmail': log.user_email,
        'courseId': log.course_id,
        'courseTitle': log.course_title,
        'courseSlug': log.course_slug,
        'moduleId': log.module_id,
        'moduleTitle': log.module_title,
        'moduleOrderIndex': log.module_order_index,
        'lectureId': log.lecture_id,
        'lectureTitle': log.lecture_title,
        'lectureOrderIndex': log.lecture_order_index,
        'sectionId': log.section_id,
        'sectionOrderIndex': log.section_order_index,
        'conversationId': log.conversation_id,
        'conversationMessageCount': log.conversation_message_count,
        'messageIndex': log.message_index,
        'eventType': log.event_type,
        'eventSequence': log.event_sequence,
        'chatbotTitle': log.chatbot_title,
        'chatbotIntro': log.chatbot_intro,
        'chatbotImageUrl': log.chatbot_image_url,
        'chatbotSystemPrompt': log.chatbot_system_prompt,
        'chatbotWelcomeMessage': log.chatbot_welcome_message,
        'messageContent': log.message_content,
        'messageCharCount': log.message_char_count,
        'messageWordCount': log.message_word_count,
        'responseContent': log.response_content,
        'responseCharCount': log.response_char_count,
        'responseWordCount': log.response_word_count,
        'responseTime': log.response_time,
        'aiModel': log.ai_model,
        'aiProvider': log.ai_provider,
        'promptTokens': log.prompt_tokens,
        'completionTokens': log.completion_tokens,
        'totalTokens': log.total_tokens,
        'errorMessage': log.error_message,
        'errorCode': log.error_code,
        'errorStack': log.error_stack,
        'deviceType': log.device_type,
        'browserName': log.browser_name,
        'browserVersion': log.browser_version,
        'osName': log.os_name,
        'osVersion': log.os_version,
        'screenWidth': log.screen_width,
        'screenHeight': log.screen_height,
        'language': log.language,
        'timezone': log.timezone,
        'ipAddress': log.ip_address,
        'metadata': log.event_metadata,
        'testMode': log.test_mode,
    }


# ---------------------------------------------------------------------------
# interaction summary (enriched table, with legacy fallback)
# ---------------------------------------------------------------------------

class SummarySource(Protocol):
    name: str

    def summarize(self, db: Session, filters: AnalyticsFilters) -> dict[str, Any]: ...


class EnrichedSummarySource:
    name = 'user_interaction_logs'

    def summarize(self, db: Session, filters: AnalyticsFilters) -> dict[str, Any]:
        m = UserInteractionLog
        conds = interaction_conditions(filters, with_search=False)
        total = db.execute(select(func.count()).select_from(m).where(*conds)).scalar_one()
        sessions = db.execute(select(func.count(func.distinct(m.session_id))).where(*conds)).scalar_one()
        by_type = _grouped(db, [m.event_type], conds)
        by_page = _grouped(db, [m.page_path], conds, limit=TOP_PAGES)
        by_course = _grouped(db, [m.course_id, m.course_title], conds + [m.course_id.is_not(None)], limit=TOP_COURSES)
        by_device = _grouped(db, [m.device_type], conds + [m.device_type.is_not(None)])
        by_browser = _grouped(db, [m.browser_name], conds + [m.browser_name.is_not(None)])
        recent = db.execute(select(m).where(*conds).order_by(m.timestamp.desc(), m.id.desc()).limit(RECENT_LIMIT)).scalars().all()
        return {
            'totalInteractions': total,
            'uniqueSessions': sessions,
            'byType': [{'type': t, 'count': c} for t, c in by_type],
            'byPage': [{'page': p, 'count': c} for p, c in by_page],
            'byCourse': [{'courseId': cid, 'courseTitle': title, 'count': c} for cid, title, c in by_course],
            'byDevice': [{'device': d, 'count': c} for d, c in by_device],
            'byBrowser': [{'browser': b, 'count': c} for b, c in by_browser],
            'recentInteractions': [interaction_to_dict(i) for i in recent],
            'source': self.name,
        }


class LegacySummarySource:
    """Reads the pre-enrichment ``user_interactions`` table into the same summary shape."""
    name = 'user_interactions'

    def summarize(self, db: Session, filters: AnalyticsFilters) -> dict[str, Any]:
        m = UserInteraction
        conds = _date_conditions(m.timestamp, filters)
        if filters.userId is not None:
            conds.append(m.user_id == filters.userId)
        if filters.page:
            conds.append(m.page.contains(filters.page, autoescape=True))
        if filters.interactionType:
            conds.append(m.interaction_type == filters.interactionType)
        # the legacy table has no course column; a course filter matches nothing
        if filters.courseId is not None:
            conds.append(m.id.is_(None))
        total = db.execute(select(func.count()).select_from(m).where(*conds)).scalar_one()
        sessions = db.execute(select(func.count(func.distinct(m.session_id))).where(*conds)).scalar_one()
        by_type = _grouped(db, [m.interaction_type], conds)
        by_page = _grouped(db, [m.page], conds, limit=TOP_PAGES)
        recent = db.execute(select(m).where(*conds).order_by(m.timestamp.desc(), m.id.desc()).limit(RECENT_LIMIT)).scalars().all()
        return {
            'totalInteractions': total,
            'uniqueSessions': sessions,
            'byType': [{'type': t, 'count': c} for t, c in by_type],
            'byPage': [{'page': p, 'count': c} for p, c in by_page],
            'byCourse': [],
            'byDevice': [],
            'byBrowser': [],
            'recentInteractions': [
                {
                    'id': i.id,
                    'userId': i.user_id,
                    'sessionId': i.session_id,
                    'eventType': i.interaction_type,
                    'pagePath': i.page,
                    'eventAction': i.action,
                    'elementId': i.element_id,
                    'elementType': i.element_type,
                    'timestamp': i.timestamp,
                    'metadata': _parse_json_text(i.additional_data),
                }
                for i in recent
            ],
            'source': self.name,
        }


def select_summary_source(db: Session) -> SummarySource:
    """Enriched table once anything has been written to it, otherwise the legacy table."""
    has_rows = db.execute(select(UserInteractionLog.id).limit(1)).first() is not None
    if has_rows:
        return EnrichedSummarySource()
    return LegacySummarySource()


def interaction_summary(db: Session, filters: AnalyticsFilters) -> dict[str, Any]:
    source = select_summary_source(db)
    _log.debug('interaction summary from %s', source.name)
    return source.summarize(db, filters)


# ---------------------------------------------------------------------------
# chatbot summary / drill-down
# ---------------------------------------------------------------------------

def _stats(db: Session, column, conds: list) -> dict[str, float]:
    row = db.execute(
        select(func.avg(column), func.min(column), func.max(column)).where(*conds, column.is_not(None))
    ).one()
    return {'avg': float(row[0] or 0), 'min': float(row[1] or 0), 'max': float(row[2] or 0)}


def chatbot_summary(db: Session, filters: AnalyticsFilters) -> dict[str, Any]:
    m = ChatbotInteractionLog
    conds = chatbot_conditions(filters)
    sent = conds + [m.event_type == 'message_sent']
    received = conds + [m.event_type == 'message_received']

    total = db.execute(select(func.count()).select_from(m).where(*conds)).scalar_one()
    by_event = _grouped(db, [m.event_type], conds)
    by_course = _grouped(db, [m.course_id, m.course_title], conds + [m.course_id.is_not(None)])
    by_module = _grouped(db, [m.module_id, m.module_title], conds + [m.module_id.is_not(None)])
    by_lecture = _grouped(db, [m.lecture_id, m.lecture_title], conds + [m.lecture_id.is_not(None)])
    by_chatbot = _grouped(db, [m.section_id, m.chatbot_title], conds)
    by_user = _grouped(db, [m.user_id, m.user_fullname], conds + [m.user_id.is_not(None)], limit=TOP_USERS)
    by_model = _grouped(db, [m.ai_model], conds + [m.ai_model.is_not(None)])

    response_time = _stats(db, m.response_time, received)
    msg_chars = _stats(db, m.message_char_count, sent)
    msg_words = _stats(db, m.message_word_count, sent)
    resp_chars = _stats(db, m.response_char_count, received)
    resp_words = _stats(db, m.response_word_count, received)

    recent = db.execute(select(m).where(*conds).order_by(m.timestamp.desc(), m.id.desc()).limit(RECENT_LIMIT)).scalars().all()
    return {
        'totalLogs': total,
        'byEventType': [{'eventType': e, 'count': c} for e, c in by_event],
        'byCourse': [{'courseId': i, 'courseTitle': t, 'count': c} for i, t, c in by_course],
        'byModule': [{'moduleId': i, 'moduleTitle': t, 'count': c} for i, t, c in by_module],
        'byLecture': [{'lectureId': i, 'lectureTitle': t, 'count': c} for i, t, c in by_lecture],
        'byChatbot': [{'sectionId': i, 'chatbotTitle': t, 'count': c} for i, t, c in by_chatbot],
        'byUser': [{'userId': i, 'userName': n, 'count': c} for i, n, c in by_user],
        'byAiModel': [{'model': model, 'count': c} for model, c in by_model],
        'responseTimeStats': response_time,
        'messageLengthStats': {
            'avgChars': msg_chars['avg'], 'minChars': msg_chars['min'], 'maxChars': msg_chars['max'],
            'avgWords': msg_words['avg'], 'minWords': msg_words['min'], 'maxWords': msg_words['max'],
        },
        'responseLengthStats': {
            'avgChars': resp_chars['avg'], 'minChars': resp_chars['min'], 'maxChars': resp_chars['max'],
            'avgWords': resp_words['avg'], 'minWords': resp_words['min'], 'maxWords': resp_words['max'],
        },
        'recentLogs': [chatbot_log_to_dict(log) for log in recent],
    }


def _pagination(page: int, limit: int, total: int) -> dict[str, int]:
    return Pagination(page=page, limit=limit, total=total, totalPages=math.ceil(total / limit) if limit else 0).model_dump()


def chatbot_logs_for_section(db: Session, section_id: int, page: int = 1, limit: int = 50) -> dict[str, Any]:
    """Paginated raw trail of one AI-tutor section, newest first."""
    m = ChatbotInteractionLog
    page, limit, offset = resolve_pagination(page, limit)
    total = db.execute(select(func.count()).select_from(m).where(m.section_id == section_id)).scalar_one()
    logs = db.execute(
        select(m).where(m.section_id == section_id).order_by(m.timestamp.desc(), m.id.desc()).offset(offset).limit(limit)
    ).scalars().all()
    return {'logs': [chatbot_log_to_dict(log) for log in logs], 'pagination': _pagination(page, limit, total)}


# ---------------------------------------------------------------------------
# query / options / time series
# ---------------------------------------------------------------------------

def query_interactions(db: Session, filters: AnalyticsFilters) -> dict[str, Any]:
    m = UserInteractionLog
    conds = interaction_conditions(filters)
    page, limit, offset = resolve_pagination(filters.pageNumber, filters.limit)
    column = getattr(m, filters.sort_column())
    order = column.asc() if filters.sortOrder == 'asc' else column.desc()
    # id breaks ties so pages are stable under equal sort keys
    tiebreak = m.id.asc() if filters.sortOrder == 'asc' else m.id.desc()
    total = db.execute(select(func.count()).select_from(m).where(*conds)).scalar_one()
    logs = db.execute(select(m).where(*conds).order_by(order, tiebreak).offset(offset).limit(limit)).scalars().all()
    return {'logs': [interaction_to_dict(i) for i in logs], 'pagination': _pagination(page, limit, total)}


def interaction_filter_options(db: Session) -> dict[str, Any]:
    m = UserInteractionLog
    users = db.execute(
        select(m.user_id, func.max(m.user_fullname), func.max(m.user_email))
        .where(m.user_id.is_not(None)).group_by(m.user_id).order_by(func.max(m.user_fullname))
    ).all()
    courses = db.execute(
        select(m.course_id, func.max(m.course_title))
        .where(m.course_id.is_not(None)).group_by(m.course_id).order_by(func.max(m.course_title))
    ).all()
    event_types = db.execute(select(m.event_type, func.count()).group_by(m.event_type).order_by(m.event_type)).all()
    pages = _grouped(db, [m.page_path], [m.page_path.is_not(None)], limit=FILTER_OPTION_PAGES)
    return {
        'users': [{'id': uid, 'fullname': name, 'email': email} for uid, name, email in users],
        'courses': [{'id': cid, 'title': title} for cid, title in courses],
        'eventTypes': [{'eventType': et, 'count': c} for et, c in event_types],
        'pages': [{'path': p, 'count': c} for p, c in pages],
    }


def _bucket_expr(db: Session, bucket: str):
    col = UserInteractionLog.timestamp
    dialect = db.get_bind().dialect.name
    if dialect == 'sqlite':
        fmt = '%Y-%m-%d %H:00' if bucket == 'hour' else '%Y-%m-%d'
        return func.strftime(fmt, col)
    return func.date_trunc(bucket, col)


def interaction_timeseries(db: Session, filters: AnalyticsFilters, bucket: str = 'day') -> dict[str, Any]:
    """Interaction and distinct-session counts per calendar bucket (``day`` or ``hour``)."""
    if bucket not in ('day', 'hour'):
        bucket = 'day'
    m = UserInteractionLog
    key = _bucket_expr(db, bucket).label('bucket')
    rows = db.execute(
        select(key, func.count().label('count'), func.count(func.distinct(m.session_id)).label('sessions'))
        .where(*interaction_conditions(filters))
        .group_by(key)
        .order_by(key)
    ).all()
    points = []
    for b, count, sessions in rows:
        label = b.isoformat() if hasattr(b, 'isoformat') else str(b)
        points.append({'bucket': label, 'count': count, 'uniqueSessions': sessions})
    return {'bucket': bucket, 'points': points}
