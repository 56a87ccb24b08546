from __future__ import annotations
import logging

from fastapi import Request

from lms_telemetry.utils.string_utils import safe_parse_int

_log = logging.getLogger(__name__)

# Set by the authenticating gateway in front of this service once it has
# verified the caller's token. Absent for anonymous visitors.
USER_ID_HEADER = 'x-authenticated-user-id'


async def optional_user_id(request: Request) -> int | None:
    """Caller identity for ingest, or ``None``. Never rejects a request."""
    raw = request.headers.get(USER_ID_HEADER)
    if raw is None:
        return None
    user_id = safe_parse_int(raw.strip())
    if user_id is None:
        _log.debug('ignoring unparseable %s header: %r', USER_ID_HEADER, raw)
    return user_id


def client_ip(request: Request) -> str | None:
    """First ``X-Forwarded-For`` hop when present, else the socket peer."""
    forwarded = request.headers.get('x-forwarded-for')
    if forwarded:
        first = forwarded.split(',')[0].strip()
        if first:
            return first
    return request.client.host if request.client else None
