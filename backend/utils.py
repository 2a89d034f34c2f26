"""
Shared backend utility helpers.
"""

import re
from typing import Any

_CAMEL_BOUNDARY = re.compile(r"([a-z])([A-Z])")


def clean_text(value: Any) -> str:
    """Normalize arbitrary values into trimmed strings."""
    if value is None:
        return ""
    return str(value).strip()


def humanize_field_name(value: Any) -> str:
    """
    Turn a camelCase or snake_case field name into a Title Case label.
    """
    text = clean_text(value)
    if not text:
        return text
    text = _CAMEL_BOUNDARY.sub(r"\1 \2", text).replace("_", " ")
    return " ".join(word[:1].upper() + word[1:] for word in text.split(" "))
