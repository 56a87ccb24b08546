from __future__ import annotations
from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from lms_telemetry.db.session import Base

# Read-only mappings of tables owned by the content and account services.
# Telemetry never writes to these and its migrations do not create them.


class User(Base):
    __tablename__ = 'users'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    fullname: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)


class Course(Base):
    __tablename__ = 'courses'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    slug: Mapped[str | None] = mapped_column(String(255), nullable=True)


class CourseModule(Base):
    __tablename__ = 'course_modules'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    course_id: Mapped[int] = mapped_column(Integer, ForeignKey('courses.id'), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    course: Mapped[Course] = relationship(Course, lazy='joined')


class Lecture(Base):
    __tablename__ = 'lectures'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    module_id: Mapped[int] = mapped_column(Integer, ForeignKey('course_modules.id'), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    module: Mapped[CourseModule] = relationship(CourseModule, lazy='joined')


class LectureSection(Base):
    __tablename__ = 'lecture_sections'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lecture_id: Mapped[int] = mapped_column(Integer, ForeignKey('lectures.id'), nullable=False)
    title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # chatbot configuration stored on the section
    chatbot_title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    chatbot_intro: Mapped[str | None] = mapped_column(Text, nullable=True)
    chatbot_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    chatbot_system_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    chatbot_welcome: Mapped[str | None] = mapped_column(Text, nullable=True)
    lecture: Mapped[Lecture] = relationship(Lecture, lazy='joined')
