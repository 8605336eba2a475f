"""Identity allocation for newly connected participants.

A participant gets a short random ``user_id``, a hue and a spawn position.
The id is drawn from :mod:`secrets` and is *not* checked against live ids:
with 3 random bytes a collision among a few dozen participants is
improbable, and the registry accepts that risk rather than retrying.
"""

from __future__ import annotations

import random
import secrets

from .types import color_data, position_data

DEFAULT_POSITION_MARGIN = 0.1
DEFAULT_SATURATION = 80
DEFAULT_LIGHTNESS = 60
DEFAULT_USER_ID_BYTES = 3

_system_random = random.SystemRandom()


def generate_user_id(num_bytes: int = DEFAULT_USER_ID_BYTES) -> str:
    """Return ``num_bytes`` of CSPRNG output as lowercase hex."""
    return secrets.token_hex(num_bytes)


def random_color(
    saturation: int = DEFAULT_SATURATION,
    lightness: int = DEFAULT_LIGHTNESS,
    rng: random.Random | None = None,
) -> color_data:
    """Pick a hue uniformly in [0, 360) with fixed saturation/lightness."""
    rng = rng or _system_random
    return color_data(
        hue=rng.randrange(360), saturation=saturation, lightness=lightness
    )


def random_position(
    margin: float = DEFAULT_POSITION_MARGIN, rng: random.Random | None = None
) -> position_data:
    """Pick a position with both axes in [margin, 1 - margin]."""
    rng = rng or _system_random
    span = 1.0 - margin * 2
    return position_data(x=margin + rng.random() * span, y=margin + rng.random() * span)


def allocate(
    margin: float = DEFAULT_POSITION_MARGIN,
    saturation: int = DEFAULT_SATURATION,
    lightness: int = DEFAULT_LIGHTNESS,
    user_id_bytes: int = DEFAULT_USER_ID_BYTES,
    rng: random.Random | None = None,
) -> tuple[str, color_data, position_data]:
    """Mint ``(user_id, color, position)`` for a new connection."""
    return (
        generate_user_id(user_id_bytes),
        random_color(saturation, lightness, rng=rng),
        random_position(margin, rng=rng),
    )
