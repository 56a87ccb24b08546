from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from lms_telemetry.core.identity import client_ip, optional_user_id
from lms_telemetry.db.session import get_db
from lms_telemetry.schemas.interaction import (
    ChatbotIngestResponse,
    ChatbotIngestResult,
    ChatbotInteractionIn,
    IngestResponse,
    InteractionBatch,
    InteractionIngestResult,
)
from lms_telemetry.services.enrichment import DomainLookup, SqlDomainLookup
from lms_telemetry.services.interactions import PersistenceError, store_chatbot_interaction, store_interactions

router = APIRouter(prefix='/analytics', tags=['analytics-ingest'])


def get_domain_lookup(db: Session = Depends(get_db)) -> DomainLookup:
    return SqlDomainLookup(db)


@router.post('/interactions', response_model=IngestResponse)
def ingest_interactions(
    body: InteractionBatch,
    request: Request,
    db: Session = Depends(get_db),
    lookup: DomainLookup = Depends(get_domain_lookup),
    user_id: int | None = Depends(optional_user_id),
):
    """Enrich and store one client batch. Anonymous callers are accepted."""
    try:
        stored = store_interactions(db, body, lookup=lookup, user_id=user_id, ip_address=client_ip(request))
    except PersistenceError:
        raise HTTPException(status_code=500, detail='Failed to store interactions')
    return IngestResponse(data=InteractionIngestResult(stored=stored))


@router.post('/chatbot-interaction', response_model=ChatbotIngestResponse)
def ingest_chatbot_interaction(
    body: ChatbotInteractionIn,
    request: Request,
    db: Session = Depends(get_db),
    lookup: DomainLookup = Depends(get_domain_lookup),
    user_id: int | None = Depends(optional_user_id),
):
    try:
        log = store_chatbot_interaction(db, body, lookup=lookup, user_id=user_id, ip_address=client_ip(request))
    except PersistenceError:
        raise HTTPException(status_code=500, detail='Failed to store chatbot interaction')
    return ChatbotIngestResponse(data=ChatbotIngestResult(id=log.id))
