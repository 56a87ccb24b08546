from __future__ import annotations
from typing import Any, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from lms_telemetry.schemas.metadata import validate_metadata

InteractionType = Literal['click', 'page_view', 'form_submit', 'scroll', 'focus', 'blur', 'hover', 'custom']
ChatbotEventType = Literal['conversation_start', 'message_sent', 'message_received', 'conversation_cleared', 'error']


class ClientInfo(BaseModel):
    """Browser/OS/device facts probed once per collector instance."""
    userAgent: Optional[str] = None
    browserName: Optional[str] = None
    browserVersion: Optional[str] = None
    osName: Optional[str] = None
    osVersion: Optional[str] = None
    deviceType: Optional[str] = None
    screenWidth: Optional[int] = None
    screenHeight: Optional[int] = None
    language: Optional[str] = None
    timezone: Optional[str] = None


class InteractionEvent(BaseModel):
    type: InteractionType
    page: str
    pageUrl: Optional[str] = None
    pageTitle: Optional[str] = None
    referrerUrl: Optional[str] = None
    action: str
    category: Optional[str] = None
    label: Optional[str] = None
    value: Optional[float] = None
    # element descriptors
    elementId: Optional[str] = None
    elementType: Optional[str] = None
    elementText: Optional[str] = None
    elementHref: Optional[str] = None
    elementClasses: Optional[str] = None
    elementName: Optional[str] = None
    elementValue: Optional[str] = None
    # scroll / viewport
    scrollDepth: Optional[int] = None
    viewportWidth: Optional[int] = None
    viewportHeight: Optional[int] = None
    metadata: Optional[dict[str, Any]] = None
    # filled in at enqueue time
    timestamp: Optional[int] = None
    sessionDuration: Optional[int] = None
    timeOnPage: Optional[int] = None
    # hierarchical context
    courseId: Optional[int] = None
    moduleId: Optional[int] = None
    lectureId: Optional[int] = None
    sectionId: Optional[int] = None
    sectionTitle: Optional[str] = None
    sectionType: Optional[str] = None

    @field_validator('metadata')
    @classmethod
    def _bounded_metadata(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
        return validate_metadata(value)


class InteractionBatch(ClientInfo):
    """Body of ``POST /analytics/interactions``."""
    sessionId: str = Field(min_length=1, max_length=128)
    sessionStartTime: Optional[int] = None
    events: List[InteractionEvent]
    testMode: Optional[str] = None


class ChatbotParams(BaseModel):
    title: Optional[str] = None
    intro: Optional[str] = None
    imageUrl: Optional[str] = None
    systemPrompt: Optional[str] = None
    welcomeMessage: Optional[str] = None


class ChatbotInteractionEvent(BaseModel):
    """One AI-tutor turn as produced by the chat widget.

    Message/response character and word counts are not part of the payload;
    the writer derives them so analytics do not depend on client version.
    """
    sectionId: int
    eventType: ChatbotEventType
    conversationId: Optional[int] = None
    conversationMessageCount: Optional[int] = None
    messageIndex: Optional[int] = None
    eventSequence: Optional[int] = None
    chatbotParams: ChatbotParams = Field(default_factory=ChatbotParams)
    messageContent: Optional[str] = None
    responseContent: Optional[str] = None
    responseTime: Optional[int] = None
    aiModel: Optional[str] = None
    aiProvider: Optional[str] = None
    promptTokens: Optional[int] = None
    completionTokens: Optional[int] = None
    totalTokens: Optional[int] = None
    errorMessage: Optional[str] = None
    errorCode: Optional[str] = None
    errorStack: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    timestamp: Optional[int] = None

    @field_validator('metadata')
    @classmethod
    def _bounded_metadata(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
        return validate_metadata(value)


class ChatbotInteractionIn(ChatbotInteractionEvent, ClientInfo):
    """Body of ``POST /analytics/chatbot-interaction``."""
    sessionId: str = Field(min_length=1, max_length=128)
    sessionStartTime: Optional[int] = None
    testMode: Optional[str] = None


class InteractionIngestResult(BaseModel):
    stored: int


class IngestResponse(BaseModel):
    success: bool = True
    data: InteractionIngestResult


class ChatbotIngestResult(BaseModel):
    id: int


class ChatbotIngestResponse(BaseModel):
    success: bool = True
    data: ChatbotIngestResult


class UserSnapshot(BaseModel):
    """Caller identity copied verbatim into every record of a request."""
    model_config = ConfigDict(frozen=True)

    id: int
    fullname: Optional[str] = None
    email: Optional[str] = None
