"""Option templating against the live context.

Step options may contain ``${...}`` references that resolve when the step is
loaded rather than when the configuration was written::

    - name: webpack5
      env: "${cmd}"
      title: "${project.name} (${project.version})"
      "${cmd}Only": true

References are dotted paths looked up on the context: mapping keys first,
then attributes. ``env`` maps to the process environment. ``\\${...}`` is an
escaped reference that survives rendering and is unescaped into a literal.
"""

from __future__ import annotations

from collections.abc import Mapping
import logging
import os
import re
from typing import Any

log = logging.getLogger(__name__)

_REFERENCE = re.compile(r"(?<!\\)\$\{\s*([^{}]*?)\s*\}")
_ESCAPED = re.compile(r"\\(\$\{)")

_MISSING = object()


def lookup(path: str, scope: Any) -> Any:
    """Resolve a dotted reference against ``scope``.

    Returns a private sentinel when any segment is missing so callers can tell
    a missing reference apart from a ``None`` value.
    """
    current = scope
    for i, segment in enumerate(path.split(".")):
        if not segment:
            return _MISSING
        if i == 0 and segment == "env":
            current = os.environ
            continue
        if isinstance(current, Mapping):
            current = current.get(segment, _MISSING)
        else:
            current = getattr(current, segment, _MISSING)
        if current is _MISSING:
            return _MISSING
    return current


def render(template: str, scope: Any) -> str:
    """Substitute every unescaped ``${ref}`` in ``template``.

    Unresolved references render as the empty string.
    """

    def _substitute(match: re.Match[str]) -> str:
        ref = match.group(1)
        value = lookup(ref, scope) if ref else _MISSING
        if value is _MISSING or value is None:
            log.debug("Template reference '%s' did not resolve", ref)
            return ""
        return str(value)

    return _REFERENCE.sub(_substitute, template)


def unescape_expr(text: str) -> str:
    """Turn escaped ``\\${`` sequences into literal ``${``."""
    return _ESCAPED.sub(r"\1", text)


def has_expressions(text: str) -> bool:
    return bool(_REFERENCE.search(text)) or bool(_ESCAPED.search(text))


def parse_opts(options: Mapping[str, Any], scope: Any) -> dict[str, Any]:
    """Return a new options mapping with keys and string values rendered.

    Nested mappings are rendered recursively; lists, numbers, booleans and
    None pass through unchanged. A key that renders to nothing is kept as
    written.
    """
    out: dict[str, Any] = {}
    for key, value in options.items():
        new_key = key
        if isinstance(key, str):
            new_key = unescape_expr(render(key, scope) or key)
        if isinstance(value, str):
            out[new_key] = unescape_expr(render(value, scope))
        elif isinstance(value, Mapping):
            out[new_key] = parse_opts(value, scope)
        else:
            out[new_key] = value
    return out
