"""
Frame scheduler.

Drives replay of an event stream against the canvas state and decides when
a snapshot is due. Frames are produced lazily, one at a time, in
chronological order; the scheduler keeps no reference to a frame once it
has been handed out.
"""

import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Iterator, Optional, Sequence

import numpy as np

from pxlsrender.canvas.state import CanvasState
from pxlsrender.errors import ERROR, ConfigurationError, DataError, DataErrorLog
from pxlsrender.events.model import Event, Region
from pxlsrender.render.palette import Palette
from pxlsrender.render.styles import DEFAULT_BACKGROUND, HEAT_MAX, Style, resolve


@dataclass
class Frame:
    """One rendered snapshot."""
    index: int
    timestamp: int  # ms since the Unix epoch
    pixels: np.ndarray  # (height, width, 4) uint8 RGBA, row-major

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    def to_bytes(self) -> bytes:
        return np.ascontiguousarray(self.pixels, dtype=np.uint8).tobytes()


class SchedulerPhase(str, Enum):
    PRIMING = "priming"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    DONE = "done"


class FrameScheduler:
    """Replays events and emits frames at a fixed cadence.

    Modes:
        interval: a frame every ``step_ms`` of log time, starting with the
            state at the first event's timestamp
        events: a frame after every ``step_events`` applied events
        screenshot: only the final frame
    """

    def __init__(
        self,
        state: CanvasState,
        palette: Palette,
        style: Style = Style.NORMAL,
        *,
        step_ms: Optional[int] = None,
        step_events: Optional[int] = None,
        screenshot: bool = False,
        skip: int = 0,
        final_frame: bool = True,
        region: Optional[Region] = None,
        background: np.ndarray | Sequence[int] = DEFAULT_BACKGROUND,
        heat_max: int = HEAT_MAX,
        errors: Optional[DataErrorLog] = None,
        on_event: Optional[Callable[[Event], None]] = None,
    ):
        """
        Args:
            state: Canvas state to replay into (owned by the scheduler from now on)
            palette: Color table
            style: Visualization style
            step_ms: Interval between frames in log milliseconds
            step_events: Number of applied events between frames
            screenshot: Emit only the final frame
            skip: Number of leading frames to drop
            final_frame: Emit the terminal frame
            region: Render window; None renders the whole canvas
            background: Canvas-sized (height, width, 4) image or one RGBA color
            heat_max: Count at which the heat style saturates
            errors: Soft-error policy; None raises every DataError
            on_event: Called with every event consumed from the stream (progress)
        """
        if step_ms is not None and step_ms <= 0:
            raise ConfigurationError(f"step must be positive (got {step_ms} ms)")
        if step_events is not None and step_events <= 0:
            raise ConfigurationError(f"step_events must be positive (got {step_events})")
        if step_ms is not None and step_events is not None:
            raise ConfigurationError("step and step_events are mutually exclusive")
        if not screenshot and step_ms is None and step_events is None:
            raise ConfigurationError("either a step, step_events or screenshot mode is required")
        if skip < 0:
            raise ConfigurationError(f"skip must not be negative (got {skip})")

        self.state = state
        self.palette = palette
        self.style = Style.parse(style)
        self.step_ms = None if screenshot else step_ms
        self.step_events = None if screenshot else step_events
        self.screenshot = screenshot
        self.skip = skip
        self.final_frame = final_frame
        self.region = region
        self.heat_max = heat_max
        self.errors = errors
        self.on_event = on_event

        # Validate the window up front so a bad region fails before replay
        state.view(region)
        self.background = self._window_background(background)

        self.phase = SchedulerPhase.PRIMING
        self.frames_emitted = 0
        self._frames_seen = 0
        self._last_frame_time: Optional[int] = None

    @property
    def mode(self) -> str:
        if self.screenshot:
            return "screenshot"
        if self.step_events is not None:
            return "events"
        return "interval"

    def _window_background(self, background) -> np.ndarray:
        bg = np.asarray(background, dtype=np.uint8)
        if bg.ndim == 1:
            return bg
        if bg.shape != (self.state.height, self.state.width, 4):
            raise ConfigurationError(
                f"background {bg.shape[1]}x{bg.shape[0]} doesn't match "
                f"canvas {self.state.width}x{self.state.height}",
                code=ERROR.CANVAS_MISMATCH,
            )
        if self.region is None:
            return bg
        rows, cols = self.region.to_slices()
        return bg[rows, cols]

    def prime(self, indices: np.ndarray):
        """Seed current colors before any event is applied."""
        if self.phase is not SchedulerPhase.PRIMING:
            raise RuntimeError(f"cannot seed in phase {self.phase.value}")
        self.state.seed(indices)

    def render(self, timestamp: int) -> np.ndarray:
        """Resolve the current state (windowed) at a reference time."""
        return resolve(
            self.state.view(self.region),
            self.style,
            self.palette,
            timestamp,
            background=self.background,
            origin_time=self.state.origin_time,
            heat_max=self.heat_max,
        )

    def _emit(self, timestamp: int) -> Iterator[Frame]:
        # Yields at most one frame and keeps no reference to it
        self._frames_seen += 1
        self._last_frame_time = timestamp
        if self._frames_seen <= self.skip:
            return
        index = self.frames_emitted
        self.frames_emitted += 1
        yield Frame(index=index, timestamp=timestamp, pixels=self.render(timestamp))

    def _apply(self, line: int, event: Event, t: int) -> bool:
        try:
            self.state.apply(event, line, timestamp_ms=t)
        except DataError as err:
            if self.errors is None:
                raise
            self.errors.report(err)
            return False
        return True

    def frames(self, events: Iterable[tuple[int, Event]]) -> Iterator[Frame]:
        """
        Replay (line, event) pairs and yield frames as they fall due.

        The event source is consumed once, in order.
        """
        if self.phase is not SchedulerPhase.PRIMING:
            raise RuntimeError("scheduler has already run")
        self.phase = SchedulerPhase.STREAMING

        next_tick: Optional[int] = None
        since_frame = 0
        # Last consumed event time, including events skipped as data errors
        last_seen: Optional[int] = None

        for line, event in events:
            t = event.timestamp_ms
            last_seen = t if last_seen is None else max(last_seen, t)
            if self.on_event is not None:
                self.on_event(event)

            if self.step_ms is not None:
                if next_tick is None:
                    # Start of the timelapse: seed state at the first event time
                    next_tick = t
                    yield from self._emit(next_tick)
                    next_tick += self.step_ms
                while t > next_tick:
                    yield from self._emit(next_tick)
                    next_tick += self.step_ms

            if not self._apply(line, event, t):
                continue

            if self.step_events is not None:
                since_frame += 1
                if since_frame >= self.step_events:
                    since_frame = 0
                    yield from self._emit(t)

        self.phase = SchedulerPhase.FINALIZING
        if self.final_frame:
            yield from self._emit(self._final_time(last_seen))

        self.phase = SchedulerPhase.DONE

    def _final_time(self, last_seen: Optional[int]) -> int:
        """Terminal frame time; never earlier than a frame already handed out."""
        candidates = [t for t in (last_seen, self._last_frame_time, self.state.latest_time) if t is not None]
        return max(candidates, default=0)

    def run(self, events: Iterable[tuple[int, Event]], sink) -> int:
        """Replay events into a sink; returns the number of frames written."""
        written = 0
        frames = self.frames(events)
        try:
            for frame in frames:
                sink.write(frame)
                written += 1
                # Release the buffer before the next one is rendered
                del frame
        finally:
            frames.close()
            close = getattr(events, "close", None)
            if close is not None:
                close()
        return written


_DONE = object()


def prefetch(items: Iterable, maxsize: int = 1024) -> Iterator:
    """
    Run an iterable on a background thread behind a bounded queue.

    The producer blocks when the queue is full. Exceptions raised by the
    producer are re-raised in the consuming thread.
    """
    if maxsize <= 0:
        raise ConfigurationError(f"queue size must be positive (got {maxsize})")

    buffer: queue.Queue = queue.Queue(maxsize=maxsize)
    stop = threading.Event()
    failure: list[BaseException] = []

    def _put(item) -> bool:
        while not stop.is_set():
            try:
                buffer.put(item, timeout=0.1)
                return True
            except queue.Full:
                continue
        return False

    def _produce():
        try:
            for item in items:
                if not _put(item):
                    return
        except BaseException as e:
            failure.append(e)
        finally:
            _put(_DONE)

    thread = threading.Thread(target=_produce, name="pxlsrender-reader", daemon=True)
    thread.start()
    try:
        while True:
            item = buffer.get()
            if item is _DONE:
                break
            yield item
        if failure:
            raise failure[0]
    finally:
        stop.set()
        thread.join(timeout=1.0)
