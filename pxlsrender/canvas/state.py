"""
Per-cell aggregate state of the canvas.

The grid is stored as one numpy array per statistic so that frames can be
resolved with vectorized operations over a whole window.
"""

from dataclasses import dataclass
from typing import NamedTuple, Optional

import numpy as np

from pxlsrender.errors import ERROR, ConfigurationError, DataError
from pxlsrender.events.model import ActionKind, Event, Region


NO_COLOR = -1
NO_TIME = -1
NO_ACTION = 255

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS


class CellArrays(NamedTuple):
    """Aligned (height, width) arrays describing a block of cells."""
    color: np.ndarray          # int32, NO_COLOR when showing background
    last_update: np.ndarray    # int64 ms, NO_TIME when never touched
    count: np.ndarray          # uint32, events applied
    last_action: np.ndarray    # uint8 ActionKind.code, NO_ACTION when never touched
    virgin: np.ndarray         # bool
    first_placed: np.ndarray   # int64 ms, NO_TIME when never painted

    @property
    def shape(self) -> tuple[int, int]:
        return self.color.shape


@dataclass(frozen=True)
class Cell:
    """Snapshot of one cell's statistics."""
    current_color_index: Optional[int] = None
    last_update_time: Optional[int] = None
    placement_count: int = 0
    last_action_kind: Optional[ActionKind] = None
    is_virgin: bool = True
    first_placed_time: Optional[int] = None

    def _fraction(self, period_ms: int) -> Optional[float]:
        if self.last_update_time is None:
            return None
        return (self.last_update_time % period_ms) / period_ms

    @property
    def intra_second_fraction(self) -> Optional[float]:
        return self._fraction(SECOND_MS)

    @property
    def intra_minute_fraction(self) -> Optional[float]:
        return self._fraction(MINUTE_MS)

    @property
    def intra_hour_fraction(self) -> Optional[float]:
        return self._fraction(HOUR_MS)

    def to_arrays(self) -> CellArrays:
        """1x1 arrays for this cell, in the same layout CanvasState uses."""
        return CellArrays(
            color=np.array([[NO_COLOR if self.current_color_index is None else self.current_color_index]], dtype=np.int32),
            last_update=np.array([[NO_TIME if self.last_update_time is None else self.last_update_time]], dtype=np.int64),
            count=np.array([[self.placement_count]], dtype=np.uint32),
            last_action=np.array([[NO_ACTION if self.last_action_kind is None else self.last_action_kind.code]], dtype=np.uint8),
            virgin=np.array([[self.is_virgin]], dtype=bool),
            first_placed=np.array([[NO_TIME if self.first_placed_time is None else self.first_placed_time]], dtype=np.int64),
        )


class CanvasState:
    """Mutable grid of cell statistics, updated one event at a time."""

    def __init__(self, width: int, height: int, palette_size: Optional[int] = None):
        """
        Allocate the grid with every cell virgin and showing the background.

        Args:
            width: Canvas width in cells
            height: Canvas height in cells
            palette_size: Number of palette entries; color indices at or above it are rejected
        """
        if width <= 0 or height <= 0:
            raise ConfigurationError(f"canvas size must be positive (got {width}x{height})")
        self.width = int(width)
        self.height = int(height)
        self.palette_size = palette_size

        shape = (self.height, self.width)
        self.color = np.full(shape, NO_COLOR, dtype=np.int32)
        self.last_update = np.full(shape, NO_TIME, dtype=np.int64)
        self.count = np.zeros(shape, dtype=np.uint32)
        self.last_action = np.full(shape, NO_ACTION, dtype=np.uint8)
        self.virgin = np.ones(shape, dtype=bool)
        self.first_placed = np.full(shape, NO_TIME, dtype=np.int64)

        self.origin_time: Optional[int] = None
        self.latest_time: Optional[int] = None
        self.applied = 0

    def __repr__(self) -> str:
        return f"CanvasState({self.width}x{self.height}, {self.applied} events)"

    @property
    def bounds(self) -> Region:
        return Region.full(self.width, self.height)

    def seed(self, indices: np.ndarray):
        """
        Prime current colors from a background image.

        Seeding is not a placement: counts, times and virgin flags stay untouched.

        Args:
            indices: (height, width) palette indices, NO_COLOR where the image has no palette match
        """
        if indices.shape != (self.height, self.width):
            raise ConfigurationError(
                f"seed shape {indices.shape[1]}x{indices.shape[0]} doesn't match "
                f"canvas {self.width}x{self.height}",
                code=ERROR.CANVAS_MISMATCH,
            )
        self.color[...] = indices.astype(np.int32)

    def check(self, event: Event, line: Optional[int] = None):
        """Raise DataError if the event cannot be applied."""
        if event.x >= self.width or event.y >= self.height:
            field = "x" if event.x >= self.width else "y"
            raise DataError(
                f"position ({event.x}, {event.y}) outside canvas {self.width}x{self.height}",
                code=ERROR.POSITION_OUT_OF_BOUNDS,
                line=line,
                field=field,
                value=event.x if field == "x" else event.y,
            )
        if (
            event.color_index is not None
            and self.palette_size is not None
            and event.color_index >= self.palette_size
        ):
            raise DataError(
                f"color index {event.color_index} outside palette of {self.palette_size}",
                code=ERROR.COLOR_OUT_OF_RANGE,
                line=line,
                field="color_index",
                value=event.color_index,
            )

    def apply(self, event: Event, line: Optional[int] = None, timestamp_ms: Optional[int] = None):
        """
        Apply one event to the cell at (event.x, event.y).

        The event is validated before anything is written, so a rejected
        event leaves the cell untouched.
        """
        self.check(event, line)

        t = event.timestamp_ms if timestamp_ms is None else timestamp_ms
        y, x = event.y, event.x

        # The log records the resulting color for every action kind
        self.color[y, x] = NO_COLOR if event.color_index is None else event.color_index
        self.last_update[y, x] = t
        self.last_action[y, x] = event.action.code
        self.count[y, x] += 1

        if event.action.is_coloring:
            if self.virgin[y, x]:
                self.virgin[y, x] = False
                self.first_placed[y, x] = t

        if self.origin_time is None:
            self.origin_time = t
        self.latest_time = t
        self.applied += 1

    def view(self, region: Optional[Region] = None) -> CellArrays:
        """Array views (not copies) over a window of the canvas."""
        if region is None:
            rows, cols = slice(None), slice(None)
        else:
            if not region.fits_within(self.width, self.height):
                raise ConfigurationError(
                    f"region ({region.x1},{region.y1})-({region.x2},{region.y2}) "
                    f"outside canvas {self.width}x{self.height}",
                    code=ERROR.REGION_INVALID,
                )
            rows, cols = region.to_slices()
        return CellArrays(
            color=self.color[rows, cols],
            last_update=self.last_update[rows, cols],
            count=self.count[rows, cols],
            last_action=self.last_action[rows, cols],
            virgin=self.virgin[rows, cols],
            first_placed=self.first_placed[rows, cols],
        )

    def cell(self, x: int, y: int) -> Cell:
        color = int(self.color[y, x])
        last_update = int(self.last_update[y, x])
        last_action = int(self.last_action[y, x])
        first_placed = int(self.first_placed[y, x])
        return Cell(
            current_color_index=None if color == NO_COLOR else color,
            last_update_time=None if last_update == NO_TIME else last_update,
            placement_count=int(self.count[y, x]),
            last_action_kind=None if last_action == NO_ACTION else ActionKind.from_code(last_action),
            is_virgin=bool(self.virgin[y, x]),
            first_placed_time=None if first_placed == NO_TIME else first_placed,
        )
