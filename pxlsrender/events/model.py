"""
Pydantic data models for canvas log records.

Defines the event, action and region types shared by the filter engine,
the canvas state and the renderer.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pxlsrender.errors import ERROR, ConfigurationError


LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S,%f"
EPOCH = datetime(1970, 1, 1)


class ActionKind(str, Enum):
    """Kind of log record, valued by its token in the log."""
    PLACE = "user place"
    UNDO = "user undo"
    OVERWRITE = "mod overwrite"
    ROLLBACK = "rollback"
    ROLLBACK_UNDO = "rollback undo"
    NUKE = "console nuke"

    @property
    def code(self) -> int:
        """Small stable integer used by the canvas arrays."""
        return _ACTION_CODES[self]

    @property
    def short_name(self) -> str:
        return _SHORT_NAMES[self]

    @property
    def is_coloring(self) -> bool:
        """Place and overwrite paint a cell; the rest restore or wipe it."""
        return self in (ActionKind.PLACE, ActionKind.OVERWRITE)

    @classmethod
    def from_code(cls, code: int) -> "ActionKind":
        return _ACTIONS_BY_CODE[code]

    @classmethod
    def parse(cls, value: str) -> "ActionKind":
        """Accept either the log token ("user place") or the short name ("place")."""
        text = value.strip().lower()
        for kind in cls:
            if text == kind.value or text == kind.short_name:
                return kind
        raise ValueError(f"unknown action kind: {value!r}")


_ACTION_CODES = {kind: i for i, kind in enumerate(ActionKind)}
_ACTIONS_BY_CODE = {i: kind for kind, i in _ACTION_CODES.items()}
_SHORT_NAMES = {
    ActionKind.PLACE: "place",
    ActionKind.UNDO: "undo",
    ActionKind.OVERWRITE: "overwrite",
    ActionKind.ROLLBACK: "rollback",
    ActionKind.ROLLBACK_UNDO: "rollbackundo",
    ActionKind.NUKE: "nuke",
}


def to_millis(ts: datetime) -> int:
    """Milliseconds since the Unix epoch; naive datetimes are taken as UTC."""
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return (ts - EPOCH) // timedelta(milliseconds=1)


def from_millis(ms: int) -> datetime:
    return EPOCH + timedelta(milliseconds=ms)


class Event(BaseModel):
    """One parsed log record."""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    x: int = Field(ge=0)
    y: int = Field(ge=0)
    color_index: Optional[int] = Field(default=None, ge=0)  # None = transparent / no recolor
    action: ActionKind = ActionKind.PLACE
    user: str = ""

    @property
    def timestamp_ms(self) -> int:
        return to_millis(self.timestamp)

    def format_timestamp(self) -> str:
        # Log precision is milliseconds
        return self.timestamp.strftime(LOG_DATE_FORMAT)[:-3]


class Region(BaseModel):
    """Inclusive rectangle of canvas cells."""
    model_config = ConfigDict(frozen=True)

    x1: int = Field(ge=0)
    y1: int = Field(ge=0)
    x2: int = Field(ge=0)
    y2: int = Field(ge=0)

    @model_validator(mode="after")
    def _check_order(self) -> "Region":
        if self.x1 > self.x2 or self.y1 > self.y2:
            raise ValueError(
                f"region corners out of order: ({self.x1},{self.y1})-({self.x2},{self.y2})"
            )
        return self

    @property
    def width(self) -> int:
        return self.x2 - self.x1 + 1

    @property
    def height(self) -> int:
        return self.y2 - self.y1 + 1

    @property
    def area(self) -> int:
        return self.width * self.height

    def contains(self, x: int, y: int) -> bool:
        return self.x1 <= x <= self.x2 and self.y1 <= y <= self.y2

    def fits_within(self, width: int, height: int) -> bool:
        return self.x2 < width and self.y2 < height

    def to_slices(self) -> tuple[slice, slice]:
        """Row and column slices for (height, width) arrays."""
        return slice(self.y1, self.y2 + 1), slice(self.x1, self.x2 + 1)

    @classmethod
    def full(cls, width: int, height: int) -> "Region":
        return cls(x1=0, y1=0, x2=width - 1, y2=height - 1)

    @classmethod
    def parse(cls, value) -> "Region":
        """Build a region from "x1,y1,x2,y2", a 4-item sequence or a mapping.

        Raises ConfigurationError for anything that is not a valid region.
        """
        if isinstance(value, Region):
            return value
        try:
            if isinstance(value, dict):
                return cls(**value)
            if isinstance(value, str):
                value = [v for v in value.replace(",", " ").split() if v]
            coords = [int(v) for v in value]
            if len(coords) != 4:
                raise ValueError(f"expected 4 values, found {len(coords)}")
            x1, y1, x2, y2 = coords
            return cls(x1=x1, y1=y1, x2=x2, y2=y2)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"invalid region {value!r}: {e}", code=ERROR.REGION_INVALID) from e
