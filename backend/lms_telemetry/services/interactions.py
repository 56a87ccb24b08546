from __future__ import annotations
import logging
import time
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lms_telemetry.models.interaction import ChatbotInteractionLog, UserInteractionLog
from lms_telemetry.schemas.interaction import ChatbotInteractionIn, InteractionBatch, UserSnapshot
from lms_telemetry.services.enrichment import (
    DomainLookup,
    SqlDomainLookup,
    chatbot_config_snapshot,
    resolve_batch_context,
    resolve_user_snapshot,
)
from lms_telemetry.utils.string_utils import count_chars, count_words, truncate

_log = logging.getLogger(__name__)

ELEMENT_FIELD_LIMIT = 500


class PersistenceError(RuntimeError):
    """A batch could not be written; nothing from it was stored."""


def _ms_to_naive(ms: int | None) -> datetime | None:
    if ms is None:
        return None
    try:
        return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).replace(tzinfo=None)
    except (OverflowError, OSError, ValueError):
        return None


def _event_time(ms: int | None, received_ms: int) -> tuple[datetime, int]:
    """Client timestamp when it is usable, else the server receipt time."""
    ts = _ms_to_naive(ms)
    if ts is not None and ms is not None:
        return ts, ms
    return _ms_to_naive(received_ms), received_ms


def _client_columns(body: InteractionBatch | ChatbotInteractionIn, ip_address: str | None) -> dict[str, Any]:
    return {
        'ip_address': ip_address,
        'user_agent': body.userAgent,
        'browser_name': body.browserName,
        'browser_version': body.browserVersion,
        'os_name': body.osName,
        'os_version': body.osVersion,
        'device_type': body.deviceType,
        'screen_width': body.screenWidth,
        'screen_height': body.screenHeight,
        'language': body.language,
        'timezone': body.timezone,
    }


def _user_columns(user: UserSnapshot | None) -> dict[str, Any]:
    return {
        'user_id': user.id if user else None,
        'user_fullname': user.fullname if user else None,
        'user_email': user.email if user else None,
    }


def build_interaction_rows(
    batch: InteractionBatch,
    *,
    lookup: DomainLookup,
    user_id: int | None = None,
    ip_address: str | None = None,
    received_ms: int | None = None,
) -> list[dict[str, Any]]:
    """Denormalize every event of ``batch`` into a flat ``user_interaction_logs`` row.

    ``event_sequence`` is the event's position in the submitted array, so the
    order the client recorded survives regardless of how batches interleave
    on arrival.
    """
    received_ms = received_ms if received_ms is not None else int(time.time() * 1000)
    user = resolve_user_snapshot(lookup, user_id)
    context = resolve_batch_context(lookup, batch.events)
    session_start = _ms_to_naive(batch.sessionStartTime)
    user_cols = _user_columns(user)
    client_cols = _client_columns(batch, ip_address)

    rows: list[dict[str, Any]] = []
    for index, event in enumerate(batch.events):
        ctx = context.for_event(event)
        ts, ts_ms = _event_time(event.timestamp, received_ms)
        rows.append({
            **user_cols,
            'session_id': batch.sessionId,
            'page_path': event.page,
            'page_url': event.pageUrl,
            'page_title': truncate(event.pageTitle, ELEMENT_FIELD_LIMIT),
            'referrer_url': event.referrerUrl,
            'course_id': ctx.course_id,
            'course_title': ctx.course_title,
            'module_id': ctx.module_id,
            'module_title': ctx.module_title,
            'lecture_id': ctx.lecture_id,
            'lecture_title': ctx.lecture_title,
            'section_id': event.sectionId,
            'section_title': truncate(event.sectionTitle, ELEMENT_FIELD_LIMIT),
            'section_type': event.sectionType,
            'event_type': event.type,
            'event_category': event.category,
            'event_action': event.action,
            'event_label': truncate(event.label, ELEMENT_FIELD_LIMIT),
            'event_value': event.value,
            'event_sequence': index,
            'element_id': event.elementId,
            'element_type': event.elementType,
            'element_text': truncate(event.elementText, ELEMENT_FIELD_LIMIT),
            'element_href': event.elementHref,
            'element_classes': truncate(event.elementClasses, ELEMENT_FIELD_LIMIT),
            'element_name': event.elementName,
            'element_value': truncate(event.elementValue, ELEMENT_FIELD_LIMIT),
            'scroll_depth': event.scrollDepth,
            'viewport_width': event.viewportWidth,
            'viewport_height': event.viewportHeight,
            **client_cols,
            'timestamp': ts,
            'timestamp_ms': ts_ms,
            'session_start_time': session_start,
            'session_duration': event.sessionDuration,
            'time_on_page': event.timeOnPage,
            'event_metadata': event.metadata,
            'test_mode': batch.testMode or None,
        })
    return rows


def store_interactions(
    db: Session,
    batch: InteractionBatch,
    *,
    lookup: DomainLookup | None = None,
    user_id: int | None = None,
    ip_address: str | None = None,
) -> int:
    """Enrich and bulk-insert a batch; all rows commit together or none do."""
    if not batch.events:
        return 0
    lookup = lookup or SqlDomainLookup(db)
    rows = build_interaction_rows(batch, lookup=lookup, user_id=user_id, ip_address=ip_address)
    try:
        db.execute(insert(UserInteractionLog), rows)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        _log.exception('failed to store %d interaction events for session %s', len(rows), batch.sessionId)
        raise PersistenceError(str(exc)) from exc
    _log.debug('stored %d interaction events session=%s user=%s', len(rows), batch.sessionId, user_id)
    return len(rows)


def store_chatbot_interaction(
    db: Session,
    data: ChatbotInteractionIn,
    *,
    lookup: DomainLookup | None = None,
    user_id: int | None = None,
    ip_address: str | None = None,
) -> ChatbotInteractionLog:
    """Persist one AI-tutor turn, resolving the full hierarchy from ``sectionId`` alone."""
    lookup = lookup or SqlDomainLookup(db)
    hierarchy = lookup.section_hierarchy(data.sectionId)
    if hierarchy is None:
        _log.debug('chatbot event for unknown section %s; storing without hierarchy', data.sectionId)
    user = resolve_user_snapshot(lookup, user_id)
    section = hierarchy.section if hierarchy else None
    lecture = hierarchy.lecture if hierarchy else None
    module = hierarchy.module if hierarchy else None
    course = hierarchy.course if hierarchy else None
    config = chatbot_config_snapshot(data.chatbotParams, section)

    received_ms = int(time.time() * 1000)
    ts, ts_ms = _event_time(data.timestamp, received_ms)
    session_duration = None
    if data.sessionStartTime is not None:
        session_duration = (ts_ms - data.sessionStartTime) // 1000

    log = ChatbotInteractionLog(
        **_user_columns(user),
        session_id=data.sessionId,
        course_id=course.id if course else None,
        course_title=course.title if course else None,
        course_slug=course.slug if course else None,
        module_id=module.id if module else None,
        module_title=module.title if module else None,
        module_order_index=module.order_index if module else None,
        lecture_id=lecture.id if lecture else None,
        lecture_title=lecture.title if lecture else None,
        lecture_order_index=lecture.order_index if lecture else None,
        section_id=data.sectionId,
        section_order_index=section.order if section else None,
        conversation_id=data.conversationId,
        conversation_message_count=data.conversationMessageCount,
        message_index=data.messageIndex,
        event_type=data.eventType,
        event_sequence=data.eventSequence,
        chatbot_title=config.title,
        chatbot_intro=config.intro,
        chatbot_image_url=config.image_url,
        chatbot_system_prompt=config.system_prompt,
        chatbot_welcome_message=config.welcome_message,
        message_content=data.messageContent,
        message_char_count=count_chars(data.messageContent),
        message_word_count=count_words(data.messageContent),
        response_content=data.responseContent,
        response_char_count=count_chars(data.responseContent),
        response_word_count=count_words(data.responseContent),
        response_time=data.responseTime,
        ai_model=data.aiModel,
        ai_provider=data.aiProvider,
        prompt_tokens=data.promptTokens,
        completion_tokens=data.completionTokens,
        total_tokens=data.totalTokens,
        error_message=data.errorMessage,
        error_code=data.errorCode,
        error_stack=data.errorStack,
        **_client_columns(data, ip_address),
        timestamp=ts,
        timestamp_ms=ts_ms,
        session_start_time=_ms_to_naive(data.sessionStartTime),
        session_duration=session_duration,
        event_metadata=data.metadata,
        test_mode=data.testMode or None,
    )
    try:
        db.add(log)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        _log.exception('failed to store chatbot %s event for section %s', data.eventType, data.sectionId)
        raise PersistenceError(str(exc)) from exc
    db.refresh(log)
    if data.eventType == 'error':
        _log.info('chatbot error captured section=%s code=%s', data.sectionId, data.errorCode)
    return log
