from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from lms_telemetry.models.domain import Course, CourseModule, Lecture, LectureSection, User
from lms_telemetry.schemas.interaction import ChatbotParams, InteractionEvent, UserSnapshot

_log = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class CourseInfo:
    id: int
    title: str
    slug: str | None = None


@dataclass(slots=True, frozen=True)
class ModuleInfo:
    id: int
    title: str
    course_id: int | None = None
    order_index: int | None = None


@dataclass(slots=True, frozen=True)
class LectureInfo:
    id: int
    title: str
    module_id: int | None = None
    order_index: int | None = None


@dataclass(slots=True, frozen=True)
class SectionInfo:
    id: int
    title: str | None = None
    type: str | None = None
    order: int | None = None
    chatbot_title: str | None = None
    chatbot_intro: str | None = None
    chatbot_image_url: str | None = None
    chatbot_system_prompt: str | None = None
    chatbot_welcome: str | None = None


@dataclass(slots=True, frozen=True)
class SectionHierarchy:
    """A section with every ancestor it could be resolved to."""
    section: SectionInfo
    lecture: LectureInfo | None = None
    module: ModuleInfo | None = None
    course: CourseInfo | None = None


class DomainLookup(Protocol):
    """Read-only view of the content model and user directory.

    Every bulk method takes a set of ids and returns only the ids it found;
    callers treat a missing key as "entity unknown or deleted".
    """

    def user(self, user_id: int) -> UserSnapshot | None: ...

    def courses(self, ids: Iterable[int]) -> dict[int, CourseInfo]: ...

    def modules(self, ids: Iterable[int]) -> dict[int, ModuleInfo]: ...

    def lectures(self, ids: Iterable[int]) -> dict[int, LectureInfo]: ...

    def section_hierarchy(self, section_id: int) -> SectionHierarchy | None: ...


class SqlDomainLookup:
    """``DomainLookup`` over the content service tables in the shared database."""

    def __init__(self, db: Session):
        self._db = db

    def user(self, user_id: int) -> UserSnapshot | None:
        row = self._db.get(User, user_id)
        if row is None:
            return None
        return UserSnapshot(id=row.id, fullname=row.fullname, email=row.email)

    def courses(self, ids: Iterable[int]) -> dict[int, CourseInfo]:
        wanted = list(set(ids))
        if not wanted:
            return {}
        rows = self._db.execute(select(Course.id, Course.title, Course.slug).where(Course.id.in_(wanted))).all()
        return {r.id: CourseInfo(id=r.id, title=r.title, slug=r.slug) for r in rows}

    def modules(self, ids: Iterable[int]) -> dict[int, ModuleInfo]:
        wanted = list(set(ids))
        if not wanted:
            return {}
        rows = self._db.execute(
            select(CourseModule.id, CourseModule.title, CourseModule.course_id, CourseModule.order_index)
            .where(CourseModule.id.in_(wanted))
        ).all()
        return {r.id: ModuleInfo(id=r.id, title=r.title, course_id=r.course_id, order_index=r.order_index) for r in rows}

    def lectures(self, ids: Iterable[int]) -> dict[int, LectureInfo]:
        wanted = list(set(ids))
        if not wanted:
            return {}
        rows = self._db.execute(
            select(Lecture.id, Lecture.title, Lecture.module_id, Lecture.order_index)
            .where(Lecture.id.in_(wanted))
        ).all()
        return {r.id: LectureInfo(id=r.id, title=r.title, module_id=r.module_id, order_index=r.order_index) for r in rows}

    def section_hierarchy(self, section_id: int) -> SectionHierarchy | None:
        # lecture/module/course are joined-eager relationships: one round trip
        section = self._db.get(LectureSection, section_id)
        if section is None:
            return None
        info = SectionInfo(
            id=section.id,
            title=section.title,
            type=section.type,
            order=section.order,
            chatbot_title=section.chatbot_title,
            chatbot_intro=section.chatbot_intro,
            chatbot_image_url=section.chatbot_image_url,
            chatbot_system_prompt=section.chatbot_system_prompt,
            chatbot_welcome=section.chatbot_welcome,
        )
        lecture = section.lecture
        module = lecture.module if lecture is not None else None
        course = module.course if module is not None else None
        return SectionHierarchy(
            section=info,
            lecture=LectureInfo(id=lecture.id, title=lecture.title, module_id=lecture.module_id, order_index=lecture.order_index) if lecture else None,
            module=ModuleInfo(id=module.id, title=module.title, course_id=module.course_id, order_index=module.order_index) if module else None,
            course=CourseInfo(id=course.id, title=course.title, slug=course.slug) if course else None,
        )


@dataclass(slots=True)
class EventContext:
    course_id: int | None = None
    course_title: str | None = None
    module_id: int | None = None
    module_title: str | None = None
    lecture_id: int | None = None
    lecture_title: str | None = None


class BatchContext:
    """Titles resolved for one ingest batch, looked up once per entity kind."""

    def __init__(self, courses: dict[int, CourseInfo], modules: dict[int, ModuleInfo], lectures: dict[int, LectureInfo]):
        self.courses = courses
        self.modules = modules
        self.lectures = lectures

    def for_event(self, event: InteractionEvent) -> EventContext:
        lecture = self.lectures.get(event.lectureId) if event.lectureId is not None else None
        module_id = event.moduleId
        if module_id is None and lecture is not None:
            module_id = lecture.module_id
        module = self.modules.get(module_id) if module_id is not None else None
        course = self.courses.get(event.courseId) if event.courseId is not None else None
        return EventContext(
            course_id=event.courseId,
            course_title=course.title if course else None,
            module_id=module_id,
            module_title=module.title if module else None,
            lecture_id=event.lectureId,
            lecture_title=lecture.title if lecture else None,
        )


def resolve_batch_context(lookup: DomainLookup, events: Sequence[InteractionEvent]) -> BatchContext:
    """Resolve course/module/lecture titles for a whole batch.

    Lectures are fetched first so that module ids derived from them join the
    explicitly supplied module ids in the single module lookup. At most three
    lookups run regardless of batch size, and none run for kinds the batch
    never references.
    """
    course_ids = {e.courseId for e in events if e.courseId is not None}
    lecture_ids = {e.lectureId for e in events if e.lectureId is not None}
    module_ids = {e.moduleId for e in events if e.moduleId is not None}

    lectures = lookup.lectures(lecture_ids) if lecture_ids else {}
    for e in events:
        if e.moduleId is None and e.lectureId is not None:
            lecture = lectures.get(e.lectureId)
            if lecture is not None and lecture.module_id is not None:
                module_ids.add(lecture.module_id)

    modules = lookup.modules(module_ids) if module_ids else {}
    courses = lookup.courses(course_ids) if course_ids else {}

    missing = (len(course_ids) - len(courses)) + (len(lecture_ids) - len(lectures)) + (len(module_ids) - len(modules))
    if missing:
        _log.debug('batch context: %d referenced ids did not resolve', missing)
    return BatchContext(courses=courses, modules=modules, lectures=lectures)


def resolve_user_snapshot(lookup: DomainLookup, user_id: int | None) -> UserSnapshot | None:
    if user_id is None:
        return None
    snapshot = lookup.user(user_id)
    if snapshot is None:
        # identity came from a valid token but the account row is gone
        return UserSnapshot(id=user_id)
    return snapshot


@dataclass(slots=True)
class ChatbotConfigSnapshot:
    title: str | None
    intro: str | None
    image_url: str | None
    system_prompt: str | None
    welcome_message: str | None


def chatbot_config_snapshot(params: ChatbotParams, section: SectionInfo | None) -> ChatbotConfigSnapshot:
    """Caller-supplied live parameters win; the section's stored config fills the gaps."""
    stored_title = None
    if section is not None:
        stored_title = section.chatbot_title or section.title
    return ChatbotConfigSnapshot(
        title=params.title or stored_title,
        intro=params.intro or (section.chatbot_intro if section else None),
        image_url=params.imageUrl or (section.chatbot_image_url if section else None),
        system_prompt=params.systemPrompt or (section.chatbot_system_prompt if section else None),
        welcome_message=params.welcomeMessage or (section.chatbot_welcome if section else None),
    )
