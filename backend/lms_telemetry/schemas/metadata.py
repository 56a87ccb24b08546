from __future__ import annotations

import json
import logging
from typing import Any, Iterator, Mapping

from lms_telemetry.utils.string_utils import normalize_null_strings, truncate

_log = logging.getLogger(__name__)

MAX_METADATA_KEYS = 32
MAX_KEY_LENGTH = 64
MAX_STRING_VALUE_LENGTH = 500
MAX_LIST_ITEMS = 20

# Keys each event type is expected to carry. Anything else is still kept
# (call-sites tag domain-specific actions) but is logged at DEBUG so payload
# drift shows up during development.
EXPECTED_METADATA_KEYS: dict[str, frozenset[str]] = {
    'click': frozenset({'dataTrack', 'ariaLabel'}),
    'page_view': frozenset({'historyLength', 'source', 'tab'}),
    'form_submit': frozenset({'action', 'method'}),
    'scroll': frozenset(),
    'focus': frozenset(),
    'blur': frozenset(),
    'hover': frozenset(),
    'custom': frozenset(),
}

Scalar = str | int | float | bool | None


class MetadataError(ValueError):
    pass


def _coerce_value(value: Any) -> Scalar | list[Scalar]:
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return truncate(value, MAX_STRING_VALUE_LENGTH)
    if isinstance(value, (list, tuple)):
        items = [v for v in value[:MAX_LIST_ITEMS] if v is None or isinstance(v, (str, bool, int, float))]
        return [truncate(v, MAX_STRING_VALUE_LENGTH) if isinstance(v, str) else v for v in items]
    raise MetadataError(f'unsupported metadata value type {type(value).__name__}')


class MetadataBag(Mapping[str, Any]):
    """Bounded key/value container attached to an interaction event.

    Holds at most ``MAX_METADATA_KEYS`` entries. Values are scalars or flat
    lists of scalars; strings are cut to ``MAX_STRING_VALUE_LENGTH``. ``None``
    values are dropped on insert so absent facts never travel.
    """

    __slots__ = ('event_type', '_data', 'dropped')

    def __init__(self, event_type: str = 'custom', initial: Mapping[str, Any] | None = None):
        self.event_type = event_type
        self._data: dict[str, Any] = {}
        self.dropped = 0
        if initial:
            self.update(initial)

    def set(self, key: str, value: Any) -> bool:
        if not isinstance(key, str) or not key or len(key) > MAX_KEY_LENGTH:
            raise MetadataError(f'invalid metadata key {key!r}')
        if value is None:
            self._data.pop(key, None)
            return False
        if key not in self._data and len(self._data) >= MAX_METADATA_KEYS:
            self.dropped += 1
            return False
        expected = EXPECTED_METADATA_KEYS.get(self.event_type)
        if expected is not None and expected and key not in expected:
            _log.debug('unexpected metadata key %s for %s event', key, self.event_type)
        self._data[key] = _coerce_value(value)
        return True

    def update(self, values: Mapping[str, Any]) -> None:
        for key, value in values.items():
            try:
                self.set(key, value)
            except MetadataError as exc:
                self.dropped += 1
                _log.debug('dropping metadata entry: %s', exc)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def to_dict(self) -> dict[str, Any] | None:
        return dict(self._data) if self._data else None


def validate_metadata(raw: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Server-side check for incoming metadata maps.

    Rejects oversized maps outright; the collector never produces them, so a
    large map means a misbehaving client rather than a legitimate payload.
    """
    if raw is None:
        return None
    if len(raw) > MAX_METADATA_KEYS:
        raise MetadataError(f'metadata has {len(raw)} keys; at most {MAX_METADATA_KEYS} allowed')
    cleaned: dict[str, Any] = {}
    for key, value in normalize_null_strings(dict(raw)).items():
        if len(key) > MAX_KEY_LENGTH:
            raise MetadataError(f'metadata key too long: {key[:16]}...')
        if value is None:
            continue
        if isinstance(value, Mapping):
            # nested objects from older clients are kept as JSON text
            cleaned[key] = truncate(json.dumps(dict(value), default=str), MAX_STRING_VALUE_LENGTH)
            continue
        cleaned[key] = _coerce_value(value)
    return cleaned or None
