from __future__ import annotations

import hmac
import logging

from fastapi import HTTPException, Request, status

from lms_telemetry.core.config import settings
from lms_telemetry.core.identity import client_ip

_log = logging.getLogger(__name__)

HEADER_NAME = 'x-admin-api-key'
QUERY_PARAM = 'api_key'
BEARER_PREFIX = 'bearer '


def configured_admin_key() -> str | None:
    value = settings.admin_api_key
    if value is None:
        return None
    return str(value).strip() or None


def _presented_key(request: Request) -> str | None:
    """Header, then ``Authorization: Bearer``, then the query string (CSV download links)."""
    candidate = request.headers.get(HEADER_NAME)
    if not candidate:
        auth = request.headers.get('authorization') or ''
        if auth.lower().startswith(BEARER_PREFIX):
            candidate = auth[len(BEARER_PREFIX):]
    if not candidate:
        candidate = request.query_params.get(QUERY_PARAM)
    if candidate is None:
        return None
    return candidate.strip() or None


async def require_admin_key(request: Request) -> None:
    """Gate the operator views. With no key configured the views are open (local development)."""
    secret = configured_admin_key()
    if not secret:
        return
    provided = _presented_key(request)
    if not provided:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Admin API key required')
    if not hmac.compare_digest(secret.encode('utf-8'), provided.encode('utf-8')):
        _log.warning('rejected admin key from %s for %s', client_ip(request), request.url.path)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Invalid admin API key')
