"""Field extraction and value cleaning for submission payloads."""

import json
import re
from typing import Any, Callable, Iterable, Optional

EMAIL_REGEX = re.compile(r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)+$")
TAG_REGEX = re.compile(r"<[^>]*>")

# Connective words kept lowercase inside Brazilian personal names.
NAME_CONNECTIVES = frozenset({"da", "das", "de", "di", "do", "dos", "du", "e"})


def _is_present(value: Any) -> bool:
    # "0" and 0 count as values; None, "", [] and {} do not
    if value is None:
        return False
    if isinstance(value, (str, list, dict)):
        return len(value) > 0
    return True


def clean_json_data(data: Any) -> dict:
    """Decode a payload (JSON string or dict) and drop empty values."""
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except (ValueError, TypeError):
            return {}

    if not isinstance(data, dict):
        return {}

    return {key: value for key, value in data.items() if _is_present(value)}


def extract_field(data: dict, possible_keys: Iterable[str]) -> Optional[Any]:
    """Return the first present, non-empty value among the candidate keys."""
    if not isinstance(data, dict):
        return None

    for key in possible_keys:
        value = data.get(key)
        if _is_present(value):
            return value
    return None


def sanitize_text(value: Any) -> str:
    """Strip tags and collapse whitespace."""
    text = TAG_REGEX.sub("", str(value))
    return " ".join(text.split())


def sanitize_email(value: Any) -> str:
    """Return a trimmed email address, or "" if it is not one."""
    email = "".join(str(value).split())
    return email if is_valid_email(email) else ""


def clean_identifier(value: Any) -> str:
    """Uppercase alphanumeric only (CPF, RF, ticket numbers)."""
    return re.sub(r"[^A-Za-z0-9]", "", str(value)).upper()


def normalize_auth_code(value: Any) -> str:
    """Uppercase alphanumeric auth code without separators."""
    return re.sub(r"[^A-Za-z0-9]", "", str(value)).upper()


def sanitize_field_value(value: Any, sanitizer: Optional[Callable[[Any], str]] = None) -> str:
    """Apply a field's sanitizer, falling back to plain text cleaning."""
    if not _is_present(value):
        return ""
    if sanitizer is None:
        return sanitize_text(value)
    return sanitizer(value)


def is_valid_identifier(identifier: str) -> bool:
    """CPF has 11 digits; RF numbers have at least 6."""
    digits = re.sub(r"[^0-9]", "", identifier or "")
    return 6 <= len(digits) <= 11


def is_valid_email(email: str) -> bool:
    """Loose structural email check."""
    return bool(email) and len(email) <= 254 and EMAIL_REGEX.match(email) is not None


def normalize_name(name: str) -> str:
    """
    Capitalize a personal name the Brazilian way.

    Every word is capitalized except connectives (da, de, dos...), which stay
    lowercase unless they open the name. Whitespace is collapsed.

        "MARIA DA SILVA"  -> "Maria da Silva"
        "joão dos santos" -> "João dos Santos"
    """
    words = name.split()
    normalized = []
    for index, word in enumerate(words):
        lower = word.lower()
        if index > 0 and lower in NAME_CONNECTIVES:
            normalized.append(lower)
        else:
            normalized.append("-".join(part[:1].upper() + part[1:] for part in lower.split("-")))
    return " ".join(normalized)
