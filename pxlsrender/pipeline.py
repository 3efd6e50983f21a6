"""
Main processing pipeline for canvas log rendering.

Wires the log reader, filter, frame scheduler and output sink together.
"""

import sys
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, Optional

import click
import numpy as np
from tqdm import tqdm

from pxlsrender.canvas.state import CanvasState
from pxlsrender.errors import ERROR, DataErrorLog, SinkError
from pxlsrender.events.filters import EventFilter, FilterConfig, filter_events
from pxlsrender.events.model import ActionKind, Event, from_millis
from pxlsrender.events.reader import STDIN_ALIASES, STDOUT_ALIASES, iter_log_events, write_log
from pxlsrender.render.palette import Palette, load_palette
from pxlsrender.render.scheduler import FrameScheduler, prefetch
from pxlsrender.render.sinks import open_sink
from pxlsrender.settings import RenderSettings, canvas_size, format_duration, load_background


def echo(message: str = "", quiet: bool = False):
    """Status output goes to stderr so stdout can carry raw frames."""
    if not quiet:
        click.echo(message, err=True)


@dataclass
class RenderResult:
    frames: int = 0
    events_read: int = 0
    events_applied: int = 0
    errors: list = field(default_factory=list)
    output: Optional[str] = None
    dry_run: bool = False


class RenderPipeline:
    """Render pipeline for one log."""

    def __init__(self, settings: RenderSettings, log_path: Path | str, quiet: bool = False):
        """
        Args:
            settings: Validated configuration
            log_path: Log file, or '-' for stdin
            quiet: Suppress status lines and progress bars
        """
        self.settings = settings
        self.log_path = log_path
        self.quiet = quiet

        # Loaded on first use
        self._palette: Optional[Palette] = None
        self._background: Optional[np.ndarray] = None
        self._background_loaded = False
        self._filter: Optional[EventFilter] = None

    @property
    def palette(self) -> Palette:
        if self._palette is None:
            self._palette = load_palette(self.settings.palette.path)
        return self._palette

    @property
    def background_image(self) -> Optional[np.ndarray]:
        """Seed image as RGBA, or None when a solid color is used."""
        if not self._background_loaded:
            path = self.settings.canvas.background
            self._background = None if path is None else load_background(path)
            self._background_loaded = True
        return self._background

    @property
    def event_filter(self) -> EventFilter:
        if self._filter is None:
            self._filter = EventFilter(self.settings.filter.to_filter_config())
        return self._filter

    @property
    def size(self) -> tuple[int, int]:
        return canvas_size(self.settings.canvas, self.background_image)

    @property
    def output_path(self) -> Optional[str]:
        out = self.settings.output
        if out.path is not None:
            return out.path
        if out.format == "raw":
            return "-"
        stem = "pxls" if str(self.log_path) in STDIN_ALIASES else Path(self.log_path).stem
        parent = Path(".") if str(self.log_path) in STDIN_ALIASES else Path(self.log_path).parent
        return str(parent / f"{stem}_{self.settings.render.style.value}.{out.format}")

    def validate(self):
        """Resolve every configuration input; raises ConfigurationError."""
        if str(self.log_path) not in STDIN_ALIASES and not Path(self.log_path).is_file():
            raise FileNotFoundError(f"Log not found: {self.log_path}")
        width, height = self.size
        region = self.settings.render.region
        if region is not None:
            CanvasState(width, height).view(region)
        _ = self.palette
        _ = self.event_filter
        if self.settings.output.format != "raw" and self.output_path in STDOUT_ALIASES:
            raise SinkError(f"{self.settings.output.format} output needs a file path")

    def plan(self) -> list[str]:
        """Human-readable description of what run() will do."""
        s = self.settings
        width, height = self.size
        lines = [
            f"Log: {self.log_path}",
            f"Canvas: {width}x{height}",
            f"Palette: {s.palette.path or 'default'} ({len(self.palette)} colors)",
            f"Background: {s.canvas.background or s.canvas.background_color}",
            f"Style: {s.render.style.value}",
        ]
        mode = s.render.mode
        if mode == "interval":
            lines.append(f"Mode: interval, every {format_duration(s.render.step)}")
        elif mode == "events":
            lines.append(f"Mode: every {s.render.step_events} events")
        else:
            lines.append("Mode: screenshot")
        if s.render.region is not None:
            r = s.render.region
            lines.append(f"Region: ({r.x1},{r.y1})-({r.x2},{r.y2}) [{r.width}x{r.height}]")
        if s.render.skip:
            lines.append(f"Skip: first {s.render.skip} frames")
        if not s.render.final_frame:
            lines.append("Final frame: suppressed")
        for clause in self.event_filter.config.describe():
            lines.append(f"Filter {clause}")
        lines.append(f"Output: {self.output_path} ({s.output.format})")
        return lines

    def _events(self, errors: DataErrorLog) -> Iterator[tuple[int, Event]]:
        events = iter_log_events(self.log_path, errors)
        return filter_events(events, self.event_filter)

    def run(self) -> RenderResult:
        """
        Run the full render.

        Returns:
            RenderResult summarizing the run
        """
        s = self.settings
        self.validate()

        echo(f"Rendering: {self.log_path}", self.quiet)
        for line in self.plan()[1:]:
            echo(f"  {line}", self.quiet)

        if s.output.dry_run:
            echo("Dry run: nothing written.", self.quiet)
            return RenderResult(output=self.output_path, dry_run=True)

        width, height = self.size
        errors = DataErrorLog(s.processing.quit_on_soft_errors, quiet=self.quiet)
        state = CanvasState(width, height, palette_size=len(self.palette))
        image = self.background_image
        background = image if image is not None else np.array(s.canvas.background_color, dtype=np.uint8)
        result = RenderResult(output=self.output_path)

        events: Iterable[tuple[int, Event]] = self._events(errors)
        if s.processing.threaded:
            events = prefetch(events, maxsize=s.processing.queue_size)

        with tqdm(
            desc="Replaying",
            unit="event",
            file=sys.stderr,
            disable=self.quiet or not s.processing.progress,
        ) as pbar:

            def on_event(event: Event):
                result.events_read += 1
                pbar.update(1)

            scheduler = FrameScheduler(
                state,
                self.palette,
                s.render.style,
                step_ms=s.render.step,
                step_events=s.render.step_events,
                screenshot=s.render.is_screenshot,
                skip=s.render.skip,
                final_frame=s.render.final_frame,
                region=s.render.region,
                background=background,
                heat_max=s.render.heat_max,
                errors=errors,
                on_event=on_event,
            )
            if image is not None:
                scheduler.prime(self.palette.match_indices(image))

            with open_sink(
                self.output_path,
                s.output.format,
                fps=s.output.fps,
                crf=s.output.crf,
                no_clobber=s.output.no_clobber,
                single=s.render.is_screenshot,
            ) as sink:
                result.frames = scheduler.run(events, sink)

        result.events_applied = state.applied
        result.errors = list(errors.records)

        echo(f"Applied {result.events_applied} of {result.events_read} events, wrote {result.frames} frame(s)", self.quiet)
        summary = errors.summary()
        if summary:
            echo(f"Warning: {summary}", self.quiet)
        return result


def filter_log(
    source: Path | str,
    output: Path | str,
    config: FilterConfig,
    *,
    quit_on_soft_errors: bool = False,
    no_clobber: bool = False,
    quiet: bool = False,
) -> tuple[int, DataErrorLog]:
    """
    Write the events of a log accepted by a filter to a new log.

    Returns:
        (lines written, data error log)
    """
    if str(source) not in STDIN_ALIASES and not Path(source).is_file():
        raise FileNotFoundError(f"Log not found: {source}")
    errors = DataErrorLog(quit_on_soft_errors, quiet=quiet)
    events = (event for _, event in filter_events(iter_log_events(source, errors), EventFilter(config)))

    if str(output) in STDOUT_ALIASES:
        return write_log(events, sys.stdout), errors

    out = Path(output)
    if no_clobber and out.exists():
        raise SinkError(f"output already exists: {out}", code=ERROR.OUTPUT_EXISTS)
    out.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(out, "w", encoding="utf8", newline="\n") as f:
            count = write_log(events, f)
    except OSError as e:
        raise SinkError(f"failed to write {out}: {e}") from e
    return count, errors


@dataclass
class LogSummary:
    events: int = 0
    first_time: Optional[int] = None
    last_time: Optional[int] = None
    max_x: int = -1
    max_y: int = -1
    actions: Counter = field(default_factory=Counter)
    users: set = field(default_factory=set)

    @property
    def suggested_size(self) -> tuple[int, int]:
        return self.max_x + 1, self.max_y + 1

    def lines(self) -> list[str]:
        out = [f"Events: {self.events}"]
        if self.events:
            first, last = from_millis(self.first_time), from_millis(self.last_time)
            out.append(f"First: {first.isoformat(sep=' ', timespec='milliseconds')}")
            out.append(f"Last: {last.isoformat(sep=' ', timespec='milliseconds')}")
            out.append(f"Duration: {format_duration(self.last_time - self.first_time)}")
            out.append(f"Bounds: x 0..{self.max_x}, y 0..{self.max_y} (canvas >= {self.suggested_size[0]}x{self.suggested_size[1]})")
            out.append(f"Users: {len(self.users)}")
            for kind in ActionKind:
                if self.actions[kind]:
                    out.append(f"  {kind.short_name}: {self.actions[kind]}")
        return out


def summarize_log(source: Path | str, errors: Optional[DataErrorLog] = None, quiet: bool = False) -> LogSummary:
    """Single pass over a log collecting counts, time span and bounds."""
    summary = LogSummary()
    for _, event in tqdm(iter_log_events(source, errors), desc="Scanning", unit="event", file=sys.stderr, disable=quiet):
        t = event.timestamp_ms
        summary.events += 1
        if summary.first_time is None:
            summary.first_time = t
        summary.last_time = t
        summary.max_x = max(summary.max_x, event.x)
        summary.max_y = max(summary.max_y, event.y)
        summary.actions[event.action] += 1
        if event.user:
            summary.users.add(event.user)
    return summary
