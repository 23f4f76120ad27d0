"""Effect payload carried by each timeline entry - owned by the codec."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Tuple


class EffectType(IntEnum):
    OFF = 0
    ON = 1
    STROBE = 2
    BLINK = 3
    BREATH = 4


# Period suggested for a freshly created entry of each effect type.
DEFAULT_PERIODS = {
    EffectType.OFF: 0,
    EffectType.ON: 0,
    EffectType.STROBE: 2,
    EffectType.BLINK: 5,
    EffectType.BREATH: 10,
}


def _check_byte(name: str, value: int) -> int:
    value = int(value)
    if not 0 <= value <= 255:
        raise ValueError(f"{name} must be within 0-255, got {value}")
    return value


@dataclass(frozen=True)
class Color:
    r: int = 0
    g: int = 0
    b: int = 0

    def __post_init__(self) -> None:
        for channel in ("r", "g", "b"):
            object.__setattr__(self, channel, _check_byte(channel, getattr(self, channel)))

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.r, self.g, self.b)

    def to_hex(self) -> str:
        return f"#{self.r:02X}{self.g:02X}{self.b:02X}"

    @classmethod
    def from_hex(cls, value: str) -> "Color":
        text = value.strip().lstrip("#")
        if len(text) != 6:
            raise ValueError(f"Expected a #RRGGBB color, got {value!r}")
        return cls(int(text[0:2], 16), int(text[2:4], 16), int(text[4:6], 16))


BLACK = Color(0, 0, 0)
WHITE = Color(255, 255, 255)


@dataclass(frozen=True)
class EffectPayload:
    """Effect parameters of one entry.

    The timeline engine treats this as an opaque value: it is copied and
    compared, never inspected. The effect index lives on the entry itself.
    """

    effect_type: EffectType = EffectType.OFF
    color: Color = field(default=BLACK)
    background_color: Color = field(default=BLACK)
    period: int = 0
    spf: int = 0
    fade: int = 0
    random_color: int = 0
    random_delay: int = 0
    broadcasting: int = 1
    sync_index: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "effect_type", EffectType(self.effect_type))
        for name in ("period", "spf", "fade", "random_color", "random_delay", "broadcasting", "sync_index"):
            object.__setattr__(self, name, _check_byte(name, getattr(self, name)))

    @classmethod
    def off(cls) -> "EffectPayload":
        """Payload of the entry every new project starts with."""
        return cls(effect_type=EffectType.OFF, color=BLACK, background_color=BLACK)

    @classmethod
    def for_effect(cls, effect_type: EffectType, **overrides: Any) -> "EffectPayload":
        """Payload with the defaults a new entry of ``effect_type`` gets."""
        effect_type = EffectType(effect_type)
        values: Dict[str, Any] = {
            "effect_type": effect_type,
            "color": WHITE,
            "background_color": BLACK,
            "period": DEFAULT_PERIODS[effect_type],
            "spf": 100,
            "fade": 100,
        }
        values.update(overrides)
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "effect_type": self.effect_type.name,
            "color": self.color.to_hex(),
            "background_color": self.background_color.to_hex(),
            "period": self.period,
            "spf": self.spf,
            "fade": self.fade,
            "random_color": self.random_color,
            "random_delay": self.random_delay,
            "broadcasting": self.broadcasting,
            "sync_index": self.sync_index,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EffectPayload":
        effect = data.get("effect_type", EffectType.OFF)
        if isinstance(effect, str):
            effect = EffectType[effect.upper()]
        return cls(
            effect_type=effect,
            color=Color.from_hex(data.get("color", "#000000")),
            background_color=Color.from_hex(data.get("background_color", "#000000")),
            period=int(data.get("period", 0)),
            spf=int(data.get("spf", 0)),
            fade=int(data.get("fade", 0)),
            random_color=int(data.get("random_color", 0)),
            random_delay=int(data.get("random_delay", 0)),
            broadcasting=int(data.get("broadcasting", 1)),
            sync_index=int(data.get("sync_index", 0)),
        )


__all__ = ["EffectType", "Color", "EffectPayload", "DEFAULT_PERIODS", "BLACK", "WHITE"]
