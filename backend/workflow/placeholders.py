"""``{variable_name}`` placeholder scanning and substitution.

Names are ASCII letters, digits, underscore and dot; dots walk into
nested values (``{contact.first_name}``). Unresolved placeholders are
left in the output untouched.
"""

import json
import re
from typing import Any, Iterable

from core.utils import get_path

PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z0-9_.]+)\}")

_MISSING = object()


def extract_variables(text: str) -> list[str]:
    """Unique placeholder names in order of first appearance."""
    if not text:
        return []
    seen: dict[str, None] = {}
    for match in PLACEHOLDER_PATTERN.finditer(text):
        seen.setdefault(match.group(1), None)
    return list(seen)


def extract_variables_from_values(values: Iterable[Any]) -> list[str]:
    """Union of placeholders across several strings, first-seen order."""
    seen: dict[str, None] = {}
    for value in values:
        if isinstance(value, str):
            for name in extract_variables(value):
                seen.setdefault(name, None)
    return list(seen)


def _lookup(source: Any, name: str) -> Any:
    if hasattr(source, "get_path"):
        return source.get_path(name, _MISSING)
    return get_path(source, name, _MISSING)


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def render_string(text: str, source: Any) -> Any:
    """Substitute placeholders in ``text``.

    When the whole string is a single placeholder the raw value is
    returned, so ``"{items}"`` yields the list itself.
    """
    full = PLACEHOLDER_PATTERN.fullmatch(text)
    if full:
        value = _lookup(source, full.group(1))
        return text if value is _MISSING else value

    def _replace(match: re.Match) -> str:
        value = _lookup(source, match.group(1))
        if value is _MISSING or value is None:
            return match.group(0)
        return _stringify(value)

    return PLACEHOLDER_PATTERN.sub(_replace, text)


def render_value(value: Any, source: Any) -> Any:
    """Recursively render strings inside dicts and lists."""
    if isinstance(value, str):
        return render_string(value, source)
    if isinstance(value, dict):
        return {key: render_value(item, source) for key, item in value.items()}
    if isinstance(value, list):
        return [render_value(item, source) for item in value]
    return value


def render_text(text: str, source: Any) -> str:
    """Like ``render_string`` but always returns text (for message bodies)."""
    if text is None:
        return text
    rendered = render_string(text, source)
    return rendered if isinstance(rendered, str) else _stringify(rendered)
