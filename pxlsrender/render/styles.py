"""
Visualization styles.

Maps cell statistics to output colors. All styles go through one dispatch
function, resolve(), which works on whole windows of cells; color_for()
is the single-cell form built on the same code path.
"""

from enum import Enum
from typing import Optional, Sequence

import numpy as np

from pxlsrender.canvas.state import (
    HOUR_MS,
    MINUTE_MS,
    NO_COLOR,
    NO_TIME,
    SECOND_MS,
    Cell,
    CellArrays,
)
from pxlsrender.errors import ERROR, ConfigurationError
from pxlsrender.events.model import ActionKind
from pxlsrender.render.gradient import Gradient, color_lerp
from pxlsrender.render.palette import RGBA, Palette


class Style(str, Enum):
    """Visualization style."""
    NORMAL = "normal"
    HEAT = "heat"
    VIRGIN = "virgin"
    ACTIVITY = "activity"
    ACTION = "action"
    MILLISECONDS = "milliseconds"
    SECONDS = "seconds"
    MINUTES = "minutes"
    COMBINED = "combined"
    AGE = "age"

    @classmethod
    def parse(cls, value) -> "Style":
        if isinstance(value, Style):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as e:
            names = ", ".join(s.value for s in cls)
            raise ConfigurationError(
                f"unknown style {value!r} (expected one of: {names})",
                code=ERROR.STYLE_UNKNOWN,
            ) from e


BLACK: RGBA = (0, 0, 0, 255)
DEFAULT_BACKGROUND: RGBA = (255, 255, 255, 255)

# Counts at or above this are drawn at full heat
HEAT_MAX = 50
HEAT_COLOR = (205, 92, 92)

ACTIVITY_GRADIENT = Gradient(
    colors=[
        (11, 21, 97, 255),
        (32, 156, 194, 255),
        (122, 222, 142, 255),
        (245, 250, 212, 255),
        (247, 151, 45, 255),
        (211, 17, 34, 255),
        (0, 0, 0, 255),
        (131, 22, 161, 255),
        (240, 101, 243, 255),
    ],
    weights=[0.0, 10.0, 50.0, 100.0, 500.0, 1000.0, 5000.0, 10000.0, 50000.0],
)

ACTION_COLORS: dict[ActionKind, RGBA] = {
    ActionKind.UNDO: (255, 0, 255, 255),          # Magenta
    ActionKind.PLACE: (0, 0, 255, 255),           # Blue
    ActionKind.OVERWRITE: (0, 255, 255, 255),     # Cyan
    ActionKind.ROLLBACK: (0, 255, 0, 255),        # Green
    ActionKind.ROLLBACK_UNDO: (255, 255, 0, 255), # Yellow
    ActionKind.NUKE: (255, 0, 0, 255),            # Red
}

# (period in ms, base color) for the placement-time styles
PLACEMENT_STYLES: dict[Style, tuple[int, RGBA]] = {
    Style.MILLISECONDS: (SECOND_MS, (255, 0, 0, 255)),
    Style.SECONDS: (MINUTE_MS, (0, 255, 0, 255)),
    Style.MINUTES: (HOUR_MS, (0, 0, 255, 255)),
}

AGE_COLOR: RGBA = (0, 0, 255, 255)


def _phase(last_update: np.ndarray, period_ms: int) -> np.ndarray:
    return (last_update % period_ms).astype(np.float64) / period_ms


def _normal(cells: CellArrays, palette: Palette, out: np.ndarray) -> np.ndarray:
    idx = cells.color
    valid = (idx != NO_COLOR) & (idx >= 0) & (idx < len(palette))
    out[valid] = palette.table[idx[valid]]
    return out


def _heat(cells: CellArrays, heat_max: int) -> np.ndarray:
    val = np.minimum(cells.count, heat_max).astype(np.float64) / float(heat_max)
    out = np.empty(cells.shape + (4,), dtype=np.uint8)
    for channel, peak in enumerate(HEAT_COLOR):
        out[..., channel] = (val * peak).astype(np.uint8)
    out[..., 3] = 255
    return out


def _virgin(cells: CellArrays, out: np.ndarray) -> np.ndarray:
    out[~cells.virgin] = BLACK
    return out


def _action(cells: CellArrays, out: np.ndarray) -> np.ndarray:
    for kind, color in ACTION_COLORS.items():
        out[cells.last_action == kind.code] = color
    return out


def _placement(cells: CellArrays, period_ms: int, color: RGBA, out: np.ndarray) -> np.ndarray:
    touched = cells.last_update != NO_TIME
    colored = color_lerp(color, _phase(cells.last_update, period_ms))
    out[touched] = colored[touched]
    return out


def _combined(cells: CellArrays, out: np.ndarray) -> np.ndarray:
    # Channel split: R = millisecond phase, G = second phase, B = minute phase
    touched = cells.last_update != NO_TIME
    for channel, period_ms in enumerate((SECOND_MS, MINUTE_MS, HOUR_MS)):
        values = (_phase(cells.last_update, period_ms) * 255.0).astype(np.uint8)
        out[..., channel] = np.where(touched, values, out[..., channel])
    out[..., 3] = np.where(touched, 255, out[..., 3])
    return out


def _age(cells: CellArrays, reference_time: int, origin_time: Optional[int], out: np.ndarray) -> np.ndarray:
    placed = cells.first_placed != NO_TIME
    if not placed.any():
        return out
    if origin_time is None:
        origin_time = int(cells.first_placed[placed].min())
    span = float(reference_time - origin_time)
    age = (reference_time - cells.first_placed).astype(np.float64)
    if span <= 0:
        val = np.ones(cells.shape, dtype=np.float64)
    else:
        val = 1.0 - age / span
    colored = color_lerp(AGE_COLOR, val)
    out[placed] = colored[placed]
    return out


def resolve(
    cells: CellArrays,
    style: Style,
    palette: Palette,
    reference_time: int,
    background: np.ndarray | Sequence[int] = DEFAULT_BACKGROUND,
    origin_time: Optional[int] = None,
    heat_max: int = HEAT_MAX,
) -> np.ndarray:
    """
    Resolve a block of cells to RGBA colors.

    Args:
        cells: Cell statistics for the block
        style: Visualization style
        palette: Color table for the normal style
        reference_time: Frame time in ms (used by the age style)
        background: (height, width, 4) background pixels, or one RGBA color
        origin_time: Time of the first applied event (age style); defaults to
            the oldest placement in the block
        heat_max: Count at which the heat style saturates

    Returns:
        (height, width, 4) uint8 RGBA buffer; the inputs are never modified
    """
    shape = cells.shape + (4,)
    out = np.array(np.broadcast_to(np.asarray(background, dtype=np.uint8), shape))

    if style is Style.NORMAL:
        return _normal(cells, palette, out)
    elif style is Style.HEAT:
        return _heat(cells, heat_max)
    elif style is Style.VIRGIN:
        return _virgin(cells, out)
    elif style is Style.ACTIVITY:
        return ACTIVITY_GRADIENT.at(cells.count)
    elif style is Style.ACTION:
        return _action(cells, out)
    elif style in PLACEMENT_STYLES:
        period_ms, color = PLACEMENT_STYLES[style]
        return _placement(cells, period_ms, color, out)
    elif style is Style.COMBINED:
        return _combined(cells, out)
    elif style is Style.AGE:
        return _age(cells, reference_time, origin_time, out)
    raise ConfigurationError(f"unsupported style: {style!r}", code=ERROR.STYLE_UNKNOWN)


def color_for(
    cell: Cell,
    style: Style,
    palette: Palette,
    reference_time: int,
    background: Sequence[int] = DEFAULT_BACKGROUND,
    origin_time: Optional[int] = None,
    heat_max: int = HEAT_MAX,
) -> RGBA:
    """Color of a single cell; same rules as resolve()."""
    pixel = resolve(
        cell.to_arrays(),
        style,
        palette,
        reference_time,
        background=background,
        origin_time=origin_time,
        heat_max=heat_max,
    )[0, 0]
    r, g, b, a = (int(v) for v in pixel)
    return (r, g, b, a)
