"""Telemetry tables: enriched interaction log, chatbot turn log, legacy interactions.

Domain tables (users, courses, course_modules, lectures, lecture_sections)
are owned by the content service and are not created here.
"""
from alembic import op
import sqlalchemy as sa

revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _client_columns() -> list[sa.Column]:
    return [
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.Text, nullable=True),
        sa.Column('browser_name', sa.String(length=50), nullable=True),
        sa.Column('browser_version', sa.String(length=50), nullable=True),
        sa.Column('os_name', sa.String(length=50), nullable=True),
        sa.Column('os_version', sa.String(length=50), nullable=True),
        sa.Column('device_type', sa.String(length=20), nullable=True),
        sa.Column('screen_width', sa.Integer, nullable=True),
        sa.Column('screen_height', sa.Integer, nullable=True),
        sa.Column('language', sa.String(length=35), nullable=True),
        sa.Column('timezone', sa.String(length=64), nullable=True),
    ]


def upgrade() -> None:  # noqa: D401
    op.create_table(
        'user_interaction_logs',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.Integer, nullable=True),
        sa.Column('user_fullname', sa.String(length=255), nullable=True),
        sa.Column('user_email', sa.String(length=255), nullable=True),
        sa.Column('session_id', sa.String(length=128), nullable=False),
        sa.Column('page_path', sa.String(length=1000), nullable=False),
        sa.Column('page_url', sa.Text, nullable=True),
        sa.Column('page_title', sa.String(length=500), nullable=True),
        sa.Column('referrer_url', sa.Text, nullable=True),
        sa.Column('course_id', sa.Integer, nullable=True),
        sa.Column('course_title', sa.String(length=500), nullable=True),
        sa.Column('module_id', sa.Integer, nullable=True),
        sa.Column('module_title', sa.String(length=500), nullable=True),
        sa.Column('lecture_id', sa.Integer, nullable=True),
        sa.Column('lecture_title', sa.String(length=500), nullable=True),
        sa.Column('section_id', sa.Integer, nullable=True),
        sa.Column('section_title', sa.String(length=500), nullable=True),
        sa.Column('section_type', sa.String(length=50), nullable=True),
        sa.Column('event_type', sa.String(length=30), nullable=False),
        sa.Column('event_category', sa.String(length=100), nullable=True),
        sa.Column('event_action', sa.String(length=255), nullable=False),
        sa.Column('event_label', sa.String(length=500), nullable=True),
        sa.Column('event_value', sa.Float, nullable=True),
        sa.Column('event_sequence', sa.Integer, nullable=False),
        sa.Column('element_id', sa.String(length=255), nullable=True),
        sa.Column('element_type', sa.String(length=50), nullable=True),
        sa.Column('element_text', sa.String(length=500), nullable=True),
        sa.Column('element_href', sa.Text, nullable=True),
        sa.Column('element_classes', sa.String(length=500), nullable=True),
        sa.Column('element_name', sa.String(length=255), nullable=True),
        sa.Column('element_value', sa.String(length=500), nullable=True),
        sa.Column('scroll_depth', sa.Integer, nullable=True),
        sa.Column('viewport_width', sa.Integer, nullable=True),
        sa.Column('viewport_height', sa.Integer, nullable=True),
        *_client_columns(),
        sa.Column('timestamp', sa.DateTime, nullable=False),
        sa.Column('timestamp_ms', sa.BigInteger, nullable=False),
        sa.Column('session_start_time', sa.DateTime, nullable=True),
        sa.Column('session_duration', sa.Integer, nullable=True),
        sa.Column('time_on_page', sa.Integer, nullable=True),
        sa.Column('metadata', sa.JSON, nullable=True),
        sa.Column('test_mode', sa.String(length=50), nullable=True),
    )
    op.create_index('ix_user_interaction_logs_user_id', 'user_interaction_logs', ['user_id'])
    op.create_index('ix_user_interaction_logs_session_id', 'user_interaction_logs', ['session_id'])
    op.create_index('ix_user_interaction_logs_page_path', 'user_interaction_logs', ['page_path'])
    op.create_index('ix_user_interaction_logs_course_id', 'user_interaction_logs', ['course_id'])
    op.create_index('ix_user_interaction_logs_event_type', 'user_interaction_logs', ['event_type'])
    op.create_index('ix_uil_timestamp', 'user_interaction_logs', ['timestamp'])
    op.create_index('ix_uil_course_timestamp', 'user_interaction_logs', ['course_id', 'timestamp'])

    op.create_table(
        'chatbot_interaction_logs',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.Integer, nullable=True),
        sa.Column('user_fullname', sa.String(length=255), nullable=True),
        sa.Column('user_email', sa.String(length=255), nullable=True),
        sa.Column('session_id', sa.String(length=128), nullable=False),
        sa.Column('course_id', sa.Integer, nullable=True),
        sa.Column('course_title', sa.String(length=500), nullable=True),
        sa.Column('course_slug', sa.String(length=255), nullable=True),
        sa.Column('module_id', sa.Integer, nullable=True),
        sa.Column('module_title', sa.String(length=500), nullable=True),
        sa.Column('module_order_index', sa.Integer, nullable=True),
        sa.Column('lecture_id', sa.Integer, nullable=True),
        sa.Column('lecture_title', sa.String(length=500), nullable=True),
        sa.Column('lecture_order_index', sa.Integer, nullable=True),
        sa.Column('section_id', sa.Integer, nullable=False),
        sa.Column('section_order_index', sa.Integer, nullable=True),
        sa.Column('conversation_id', sa.Integer, nullable=True),
        sa.Column('conversation_message_count', sa.Integer, nullable=True),
        sa.Column('message_index', sa.Integer, nullable=True),
        sa.Column('event_type', sa.String(length=30), nullable=False),
        sa.Column('event_sequence', sa.Integer, nullable=True),
        sa.Column('chatbot_title', sa.String(length=500), nullable=True),
        sa.Column('chatbot_intro', sa.Text, nullable=True),
        sa.Column('chatbot_image_url', sa.Text, nullable=True),
        sa.Column('chatbot_system_prompt', sa.Text, nullable=True),
        sa.Column('chatbot_welcome_message', sa.Text, nullable=True),
        sa.Column('message_content', sa.Text, nullable=True),
        sa.Column('message_char_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('message_word_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('response_content', sa.Text, nullable=True),
        sa.Column('response_char_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('response_word_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('response_time', sa.Integer, nullable=True),
        sa.Column('ai_model', sa.String(length=100), nullable=True),
        sa.Column('ai_provider', sa.String(length=50), nullable=True),
        sa.Column('prompt_tokens', sa.Integer, nullable=True),
        sa.Column('completion_tokens', sa.Integer, nullable=True),
        sa.Column('total_tokens', sa.Integer, nullable=True),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('error_code', sa.String(length=100), nullable=True),
        sa.Column('error_stack', sa.Text, nullable=True),
        *_client_columns(),
        sa.Column('timestamp', sa.DateTime, nullable=False),
        sa.Column('timestamp_ms', sa.BigInteger, nullable=False),
        sa.Column('session_start_time', sa.DateTime, nullable=True),
        sa.Column('session_duration', sa.Integer, nullable=True),
        sa.Column('metadata', sa.JSON, nullable=True),
        sa.Column('test_mode', sa.String(length=50), nullable=True),
    )
    op.create_index('ix_chatbot_interaction_logs_user_id', 'chatbot_interaction_logs', ['user_id'])
    op.create_index('ix_chatbot_interaction_logs_session_id', 'chatbot_interaction_logs', ['session_id'])
    op.create_index('ix_chatbot_interaction_logs_course_id', 'chatbot_interaction_logs', ['course_id'])
    op.create_index('ix_chatbot_interaction_logs_section_id', 'chatbot_interaction_logs', ['section_id'])
    op.create_index('ix_chatbot_interaction_logs_event_type', 'chatbot_interaction_logs', ['event_type'])
    op.create_index('ix_cil_timestamp', 'chatbot_interaction_logs', ['timestamp'])
    op.create_index('ix_cil_section_timestamp', 'chatbot_interaction_logs', ['section_id', 'timestamp'])

    op.create_table(
        'user_interactions',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.Integer, nullable=True),
        sa.Column('session_id', sa.String(length=128), nullable=True),
        sa.Column('interaction_type', sa.String(length=30), nullable=False),
        sa.Column('page', sa.String(length=1000), nullable=False),
        sa.Column('action', sa.String(length=255), nullable=True),
        sa.Column('element_id', sa.String(length=255), nullable=True),
        sa.Column('element_type', sa.String(length=50), nullable=True),
        sa.Column('additional_data', sa.Text, nullable=True),
        sa.Column('timestamp', sa.DateTime, nullable=False),
    )
    op.create_index('ix_user_interactions_user_id', 'user_interactions', ['user_id'])
    op.create_index('ix_user_interactions_timestamp', 'user_interactions', ['timestamp'])


def downgrade() -> None:  # noqa: D401
    op.drop_table('user_interactions')
    op.drop_table('chatbot_interaction_logs')
    op.drop_table('user_interaction_logs')
