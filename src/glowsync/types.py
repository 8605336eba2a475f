"""
Data types for the GlowSync client.

All types use snake_case naming conventions for Python compatibility.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class position_data:
    """Normalized 2-D canvas position (both axes in 0..1)."""

    x: float = 0.5
    y: float = 0.5


@dataclass(frozen=True)
class color_data:
    """HSL color; only the hue varies between participants."""

    hue: int = 0
    saturation: int = 80
    lightness: int = 60

    def to_css(self, alpha: float | None = None) -> str:
        """Render as a CSS ``hsl()``/``hsla()`` string."""
        if alpha is None:
            return f"hsl({self.hue}, {self.saturation}%, {self.lightness}%)"
        alpha = max(0.0, min(alpha, 1.0))
        return f"hsla({self.hue}, {self.saturation}%, {self.lightness}%, {alpha})"


@dataclass
class presence_data:
    """A participant as seen by one client."""

    user_id: str
    color: color_data
    position: position_data
    intensity: float = 0.0
    is_self: bool = False
