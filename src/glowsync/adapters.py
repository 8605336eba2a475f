"""
Adapters between snake_case Python objects and the camelCase wire format.

The serializer only deals in plain dicts; these helpers turn registry records
into wire dicts on the server and wire dicts into ``presence_data`` on the
client. ``connection_id`` is never written to the wire.
"""

import math
from typing import Any

from .registry import PresenceRecord, sanitize_intensity
from .types import color_data, position_data, presence_data


def color_to_wire(c: color_data) -> dict[str, Any]:
    return {"hue": c.hue, "saturation": c.saturation, "lightness": c.lightness}


def color_from_wire(data: Any) -> color_data:
    """Missing or malformed fields fall back to the defaults."""
    if not isinstance(data, dict):
        return color_data()
    defaults = color_data()
    return color_data(
        hue=_as_int(data.get("hue"), defaults.hue),
        saturation=_as_int(data.get("saturation"), defaults.saturation),
        lightness=_as_int(data.get("lightness"), defaults.lightness),
    )


def position_to_wire(p: position_data) -> dict[str, Any]:
    return {"x": p.x, "y": p.y}


def position_from_wire(data: Any) -> position_data:
    """A missing position renders at the canvas centre."""
    if not isinstance(data, dict):
        return position_data()
    return position_data(
        x=_as_float(data.get("x"), 0.5),
        y=_as_float(data.get("y"), 0.5),
    )


def record_to_wire(record: PresenceRecord) -> dict[str, Any]:
    """Public view of a server record."""
    return {
        "userId": record.user_id,
        "color": color_to_wire(record.color),
        "position": position_to_wire(record.position),
        "intensity": record.intensity,
    }


def presence_from_wire(data: dict[str, Any], is_self: bool = False) -> presence_data:
    """Convert a wire record into a mirror entry."""
    return presence_data(
        user_id=str(data.get("userId")),
        color=color_from_wire(data.get("color")),
        position=position_from_wire(data.get("position")),
        intensity=sanitize_intensity(data.get("intensity", 0.0)),
        is_self=bool(is_self),
    )


def _is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _as_int(value: Any, default: int) -> int:
    return int(value) if _is_finite_number(value) else default


def _as_float(value: Any, default: float) -> float:
    return float(value) if _is_finite_number(value) else default
