import re
from typing import Any, Mapping, Sequence

_WS = re.compile(r'\s+')


def normalize_null_strings(obj: Any) -> Any:
    """Recursively convert string 'null' (case-insensitive) to None inside dict/list structures.

    Args:
        obj: The object to process. Can be a string, dictionary, list, or other type.

    Returns:
        The processed object with all 'null' strings converted to None.
        Other types are returned as-is.
    """
    if isinstance(obj, str):
        return None if obj.lower() == "null" else obj
    if isinstance(obj, Mapping):
        return {k: normalize_null_strings(v) for k, v in obj.items()}
    if isinstance(obj, Sequence) and not isinstance(obj, (str, bytes)):
        return [normalize_null_strings(v) for v in obj]
    return obj


def truncate(text: str | None, limit: int) -> str | None:
    if text is None:
        return None
    return text[:limit]


def count_chars(text: str | None) -> int:
    return len(text) if text else 0


def count_words(text: str | None) -> int:
    if not text:
        return 0
    return len([w for w in _WS.split(text.strip()) if w])


def safe_parse_int(value: Any) -> int | None:
    """Parse a leading base-10 integer; anything unparseable is ``None``.

    ``0`` is a legitimate id and is returned as such. Leading digits followed
    by junk (``"12abc"``) parse like a browser ``parseInt`` would.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value == value and value not in (float('inf'), float('-inf')) else None
    match = re.match(r'\s*([+-]?\d+)', str(value))
    if not match:
        return None
    return int(match.group(1))
