import logging
from typing import Any, Dict

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from lms_telemetry.core.config import settings
from lms_telemetry.db.session import SessionLocal

router = APIRouter()
_log = logging.getLogger(__name__)


def _alembic_head() -> str | None:
    try:
        with SessionLocal() as db:
            row = db.execute(text('SELECT version_num FROM alembic_version')).first()
    except SQLAlchemyError:
        # create_all deployments have no alembic_version table
        _log.debug('alembic_version not readable', exc_info=True)
        return None
    return row[0] if row else None


def get_version_payload() -> Dict[str, Any]:
    return {
        'app': settings.app_name,
        'version': settings.version,
        'schema_management': 'alembic' if settings.run_migrations else 'create_all',
        'db_alembic_head': _alembic_head(),
    }


@router.get('/version')
async def version():
    return get_version_payload()
