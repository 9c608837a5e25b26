"""Placeholder substitution for plan steps and verification commands.

Placeholders are ``{name}``; names absent from the variables are left in the
text verbatim.
"""

from __future__ import annotations

import json
import math
import re
from decimal import Decimal
from typing import Any, Callable, Mapping

_PLACEHOLDER_RE = re.compile(r"\{([^{}]+)\}")


def _format_float(value: float) -> str:
    """Shortest round-trip digits laid out like ECMAScript number-to-string.

    Plain notation for decimal exponents in [-6, 21), exponent notation
    (``1e+21``, ``1e-7``) outside it.
    """
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    _, digit_tuple, exponent = Decimal(repr(abs(value))).normalize().as_tuple()
    digits = "".join(map(str, digit_tuple))
    k = len(digits)
    n = exponent + k
    if k <= n <= 21:
        return sign + digits + "0" * (n - k)
    if 0 < n <= 21:
        return f"{sign}{digits[:n]}.{digits[n:]}"
    if -6 < n <= 0:
        return f"{sign}0.{'0' * -n}{digits}"
    mantissa = digits if k == 1 else f"{digits[0]}.{digits[1:]}"
    return f"{sign}{mantissa}e{'+' if n - 1 >= 0 else '-'}{abs(n - 1)}"


def render_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_float(value)
    if value is None:
        return ""
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


def _derive_resource(inputs: Mapping[str, Any]) -> str | None:
    """``/api/todos`` -> ``todos``; ``/users/:id`` -> ``users``."""
    endpoint_path = inputs.get("endpoint_path")
    if not isinstance(endpoint_path, str):
        return None
    segments = [segment for segment in endpoint_path.split("/") if segment and ":" not in segment and "?" not in segment]
    return segments[-1] if segments else None


DERIVED_VARIABLES: dict[str, Callable[[Mapping[str, Any]], str | None]] = {
    "resource": _derive_resource,
}


def derive_convenience_variables(inputs: Mapping[str, Any]) -> dict[str, str]:
    derived: dict[str, str] = {}
    for name, derive in DERIVED_VARIABLES.items():
        value = derive(inputs)
        if value is not None:
            derived[name] = value
    return derived


def build_variables(inputs: Mapping[str, Any]) -> dict[str, Any]:
    # Derived values take precedence over same-named inputs.
    return {**inputs, **derive_convenience_variables(inputs)}


def render_text(pattern: str, variables: Mapping[str, Any]) -> str:
    def _substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        return render_value(variables[name])

    return _PLACEHOLDER_RE.sub(_substitute, pattern)
