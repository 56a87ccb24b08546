from __future__ import annotations
import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from lms_telemetry.client.dom import Element, Host
from lms_telemetry.utils.string_utils import safe_parse_int

_log = logging.getLogger(__name__)

CONTEXT_ATTR = 'data-analytics-context'
COURSE_ATTR = 'data-course-id'
MODULE_ATTR = 'data-module-id'
LECTURE_ATTR = 'data-lecture-id'
SECTION_ATTR = 'data-section-id'
SECTION_TITLE_ATTR = 'data-section-title'
SECTION_TYPE_ATTR = 'data-section-type'

# /learn/12, /courses/12, /teach/courses/12 and .../lecture/34
COURSE_PATH = re.compile(r'(?:learn|courses|teach/courses)/(\d+)')
LECTURE_PATH = re.compile(r'lecture/(\d+)')


@dataclass(slots=True)
class HierarchyContext:
    course_id: int | None = None
    module_id: int | None = None
    lecture_id: int | None = None
    section_id: int | None = None
    section_title: str | None = None
    section_type: str | None = None

    def as_event_fields(self) -> dict[str, Any]:
        """camelCase event fields, omitting anything that was not found."""
        fields = {
            'courseId': self.course_id,
            'moduleId': self.module_id,
            'lectureId': self.lecture_id,
            'sectionId': self.section_id,
            'sectionTitle': self.section_title,
            'sectionType': self.section_type,
        }
        return {k: v for k, v in fields.items() if v is not None}


def _first(*candidates: int | None) -> int | None:
    for value in candidates:
        if value is not None:
            return value
    return None


class ContextExtractor:
    """Infers course/module/lecture/section ids from page markers and the URL.

    Sources, most trusted first: the JSON blob on the ``data-analytics-context``
    marker, the per-field ``data-*-id`` markers, then the URL path. Section
    fields come only from the nearest ancestor of the interacting element.
    A value that does not parse is treated as absent and the next source is
    consulted; ``0`` is a real id.
    """

    def __init__(self, host: Host):
        self._host = host

    def _marker_blob(self) -> dict[str, Any]:
        el = self._host.document.query_selector(f'[{CONTEXT_ATTR}]')
        raw = el.get_attribute(CONTEXT_ATTR) if el is not None else None
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            _log.debug('ignoring malformed %s marker', CONTEXT_ATTR)
            return {}
        return data if isinstance(data, dict) else {}

    def _marker_attr(self, attr: str) -> int | None:
        el = self._host.document.query_selector(f'[{attr}]')
        return safe_parse_int(el.get_attribute(attr)) if el is not None else None

    @staticmethod
    def _path_id(pattern: re.Pattern[str], path: str) -> int | None:
        match = pattern.search(path)
        return safe_parse_int(match.group(1)) if match else None

    def extract(self, element: Element | None = None) -> HierarchyContext:
        blob = self._marker_blob()
        path = self._host.location.pathname
        ctx = HierarchyContext(
            course_id=_first(
                safe_parse_int(blob.get('courseId')),
                self._marker_attr(COURSE_ATTR),
                self._path_id(COURSE_PATH, path),
            ),
            module_id=_first(
                safe_parse_int(blob.get('moduleId')),
                self._marker_attr(MODULE_ATTR),
            ),
            lecture_id=_first(
                safe_parse_int(blob.get('lectureId')),
                self._marker_attr(LECTURE_ATTR),
                self._path_id(LECTURE_PATH, path),
            ),
        )
        if element is not None:
            section = element.closest(f'[{SECTION_ATTR}]')
            if section is not None:
                ctx.section_id = safe_parse_int(section.get_attribute(SECTION_ATTR))
                ctx.section_title = section.get_attribute(SECTION_TITLE_ATTR) or None
                ctx.section_type = section.get_attribute(SECTION_TYPE_ATTR) or None
        return ctx
