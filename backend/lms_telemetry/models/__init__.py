# Import every mapped class so Base.metadata is complete for create_all/alembic.
from lms_telemetry.models.domain import Course, CourseModule, Lecture, LectureSection, User
from lms_telemetry.models.interaction import ChatbotInteractionLog, UserInteraction, UserInteractionLog

__all__ = [
    'ChatbotInteractionLog',
    'Course',
    'CourseModule',
    'Lecture',
    'LectureSection',
    'User',
    'UserInteraction',
    'UserInteractionLog',
]

# Tables this service owns; the domain tables are mapped read-only.
TELEMETRY_TABLES = frozenset({
    UserInteractionLog.__tablename__,
    ChatbotInteractionLog.__tablename__,
    UserInteraction.__tablename__,
})
