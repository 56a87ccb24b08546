from __future__ import annotations
import csv
import io
import logging
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from lms_telemetry.core.config import settings
from lms_telemetry.models.interaction import ChatbotInteractionLog, UserInteractionLog
from lms_telemetry.schemas.analytics import AnalyticsFilters
from lms_telemetry.services.analytics import chatbot_log_to_dict, interaction_conditions, interaction_to_dict

_log = logging.getLogger(__name__)

NO_DATA = 'No data to export'
JSON_EXPORT_LIMIT = 1000

# Header order is part of the file contract; spreadsheets built on earlier
# exports address columns by position.
CSV_COLUMNS: tuple[str, ...] = (
    'id', 'timestamp', 'userId', 'userEmail', 'userFullname', 'sessionId',
    'eventType', 'eventCategory', 'eventAction', 'eventLabel', 'eventValue',
    'pagePath', 'pageUrl', 'pageTitle', 'referrerUrl',
    'courseId', 'courseTitle', 'moduleId', 'moduleTitle', 'lectureId', 'lectureTitle',
    'elementId', 'elementType', 'elementText', 'elementHref',
    'scrollDepth', 'viewportWidth', 'viewportHeight', 'timeOnPage',
    'deviceType', 'browserName', 'browserVersion', 'osName', 'osVersion',
    'screenWidth', 'screenHeight', 'language', 'timezone',
)

EXPORT_SEARCH_COLUMNS = (
    UserInteractionLog.user_email,
    UserInteractionLog.user_fullname,
    UserInteractionLog.page_path,
    UserInteractionLog.course_title,
)


def format_cell(value: Any) -> str:
    """Text of one cell before quoting: empty for null, lowercase booleans, ISO timestamps."""
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, datetime):
        return value.isoformat(timespec='milliseconds') + ('Z' if value.tzinfo is None else '')
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def rows_to_csv(rows: Iterable[dict[str, Any]], columns: tuple[str, ...] = CSV_COLUMNS) -> str:
    """RFC 4180 text: CRLF records, cells quoted only when they hold a delimiter, quote or line break."""
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=columns, extrasaction='ignore', lineterminator='\r\n')
    writer.writeheader()
    for row in rows:
        writer.writerow({col: format_cell(row.get(col)) for col in columns})
    return output.getvalue()


def export_interactions_csv(db: Session, filters: AnalyticsFilters, *, row_cap: int | None = None) -> str:
    """Filtered interaction records as CSV text, newest first.

    Returns ``NO_DATA`` instead of a header-only file when nothing matches.
    """
    cap = row_cap if row_cap is not None else settings.export_row_cap
    conds = interaction_conditions(filters, search_columns=EXPORT_SEARCH_COLUMNS)
    m = UserInteractionLog
    logs = db.execute(
        select(m).where(*conds).order_by(m.timestamp.desc(), m.id.desc()).limit(cap)
    ).scalars().all()
    if not logs:
        return NO_DATA
    if len(logs) == cap:
        _log.warning('csv export hit the %d row cap; older rows omitted', cap)
    return rows_to_csv(interaction_to_dict(i) for i in logs)


def export_recent_interactions(db: Session, limit: int = JSON_EXPORT_LIMIT) -> list[dict[str, Any]]:
    m = UserInteractionLog
    logs = db.execute(select(m).order_by(m.timestamp.desc(), m.id.desc()).limit(limit)).scalars().all()
    return [interaction_to_dict(i) for i in logs]


def export_recent_chatbot_logs(db: Session, limit: int = JSON_EXPORT_LIMIT) -> list[dict[str, Any]]:
    m = ChatbotInteractionLog
    logs = db.execute(select(m).order_by(m.timestamp.desc(), m.id.desc()).limit(limit)).scalars().all()
    return [chatbot_log_to_dict(log) for log in logs]
