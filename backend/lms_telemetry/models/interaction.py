from __future__ import annotations
from datetime import datetime
from sqlalchemy import BigInteger, DateTime, Float, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from lms_telemetry.db.session import Base


class UserInteractionLog(Base):
    """Write-once, denormalized interaction row.

    Titles and the user snapshot are copied in at ingest time and never
    refreshed, so rows keep describing what the user saw even after the
    course or the account is renamed or removed.
    """
    __tablename__ = 'user_interaction_logs'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # user snapshot
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    user_fullname: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    session_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    # location
    page_path: Mapped[str] = mapped_column(String(1000), nullable=False, index=True)
    page_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    page_title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    referrer_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # hierarchy, resolved at write time
    course_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    course_title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    module_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    module_title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    lecture_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    lecture_title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    section_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    section_title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    section_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # event
    event_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    event_category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    event_action: Mapped[str] = mapped_column(String(255), nullable=False)
    event_label: Mapped[str | None] = mapped_column(String(500), nullable=True)
    event_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    event_sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    # element
    element_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    element_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    element_text: Mapped[str | None] = mapped_column(String(500), nullable=True)
    element_href: Mapped[str | None] = mapped_column(Text, nullable=True)
    element_classes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    element_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    element_value: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # scroll / viewport
    scroll_depth: Mapped[int | None] = mapped_column(Integer, nullable=True)
    viewport_width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    viewport_height: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # client
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    browser_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    browser_version: Mapped[str | None] = mapped_column(String(50), nullable=True)
    os_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    os_version: Mapped[str | None] = mapped_column(String(50), nullable=True)
    device_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    screen_width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    screen_height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    language: Mapped[str | None] = mapped_column(String(35), nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # timing: calendar timestamp (naive UTC) plus the raw client epoch-ms
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    timestamp_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    session_start_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    session_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    time_on_page: Mapped[int | None] = mapped_column(Integer, nullable=True)

    event_metadata: Mapped[dict | None] = mapped_column('metadata', JSON(none_as_null=True), nullable=True)
    test_mode: Mapped[str | None] = mapped_column(String(50), nullable=True)

    __table_args__ = (
        Index('ix_uil_timestamp', 'timestamp'),
        Index('ix_uil_course_timestamp', 'course_id', 'timestamp'),
    )


class ChatbotInteractionLog(Base):
    """One AI-tutor turn with the full course hierarchy and chatbot config snapshot."""
    __tablename__ = 'chatbot_interaction_logs'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    user_fullname: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    session_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    course_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    course_title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    course_slug: Mapped[str | None] = mapped_column(String(255), nullable=True)
    module_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    module_title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    module_order_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    lecture_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    lecture_title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    lecture_order_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    section_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    section_order_index: Mapped[int | None] = mapped_column(Integer, nullable=True)

    conversation_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    conversation_message_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    message_index: Mapped[int | None] = mapped_column(Integer, nullable=True)

    event_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    event_sequence: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # chatbot configuration as it was at the time of the turn
    chatbot_title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    chatbot_intro: Mapped[str | None] = mapped_column(Text, nullable=True)
    chatbot_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    chatbot_system_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    chatbot_welcome_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    message_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    message_char_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    message_word_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    response_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_char_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    response_word_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    response_time: Mapped[int | None] = mapped_column(Integer, nullable=True)  # ms
    ai_model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ai_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    prompt_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completion_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_stack: Mapped[str | None] = mapped_column(Text, nullable=True)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    browser_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    browser_version: Mapped[str | None] = mapped_column(String(50), nullable=True)
    os_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    os_version: Mapped[str | None] = mapped_column(String(50), nullable=True)
    device_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    screen_width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    screen_height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    language: Mapped[str | None] = mapped_column(String(35), nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)

    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    timestamp_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    session_start_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    session_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)

    event_metadata: Mapped[dict | None] = mapped_column('metadata', JSON(none_as_null=True), nullable=True)
    test_mode: Mapped[str | None] = mapped_column(String(50), nullable=True)

    __table_args__ = (
        Index('ix_cil_timestamp', 'timestamp'),
        Index('ix_cil_section_timestamp', 'section_id', 'timestamp'),
    )


class UserInteraction(Base):
    """Pre-enrichment interaction table; read only by the summary fallback."""
    __tablename__ = 'user_interactions'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    session_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    interaction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    page: Mapped[str] = mapped_column(String(1000), nullable=False)
    action: Mapped[str | None] = mapped_column(String(255), nullable=True)
    element_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    element_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    additional_data: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON text
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, index=True)
