"""
Prompt input preparation: HTML stripping, activity serialization, truncation,
and literal `${key}` placeholder substitution (no expression evaluation).
"""
from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

_TAG_RE = re.compile(r"<[^>]*>")

TRUNCATION_MARKER = "\n...[truncated]"
PLACEHOLDERS = ("content", "username", "displayName", "maxValue", "logs")
_PLACEHOLDER_RE = re.compile(r"\$\{(" + "|".join(PLACEHOLDERS) + r")\}")


def strip_html(text: str | None) -> str:
    if not text:
        return ""
    return _TAG_RE.sub("", text)


def strip_html_deep(value: Any) -> Any:
    """Strip HTML from every string inside nested dicts/lists."""
    if isinstance(value, str):
        return strip_html(value)
    if isinstance(value, Mapping):
        return {key: strip_html_deep(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [strip_html_deep(item) for item in value]
    return value


def serialize_activity(actions: list[dict[str, Any]]) -> str:
    return json.dumps(strip_html_deep(actions), ensure_ascii=False, default=str)


def truncate(content: str, max_chars: int) -> str:
    if max_chars > 0 and len(content) > max_chars:
        return content[:max_chars] + TRUNCATION_MARKER
    return content


def prepare_prompt(template: str, values: Mapping[str, Any]) -> str:
    # single pass, so substituted values are never re-scanned for tokens
    def _sub(match: re.Match[str]) -> str:
        key = match.group(1)
        return str(values[key]) if key in values else match.group(0)

    return _PLACEHOLDER_RE.sub(_sub, template)
