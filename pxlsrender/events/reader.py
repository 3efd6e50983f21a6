"""
Streaming reader and writer for tab-separated canvas logs.

Each line holds six fields:
    timestamp  user-hash  x  y  color-index  action

e.g. ``2021-06-01 12:00:00,123\t<hash>\t10\t20\t5\tuser place``.
A color index of -1 marks a transparent / unrecorded color.
"""

import sys
from datetime import datetime
from pathlib import Path
from typing import IO, Iterable, Iterator, Optional

from pxlsrender.errors import ERROR, DataError, DataErrorLog
from pxlsrender.events.model import LOG_DATE_FORMAT, ActionKind, Event


STDIN_ALIASES = ("-", "stdin", "pipe:0")
STDOUT_ALIASES = ("-", "stdout", "pipe:1")

TRANSPARENT_INDEX = -1


def parse_log_line(line: str, line_number: Optional[int] = None) -> Event:
    """
    Parse a single log line into an Event.

    Args:
        line: Raw line, without trailing newline
        line_number: 1-based line number used in error messages

    Returns:
        Parsed Event

    Raises:
        DataError: if the line is malformed
    """
    fields = line.rstrip("\r\n").split("\t")
    if len(fields) != 6:
        raise DataError(
            f"expected 6 tab-separated fields, found {len(fields)}",
            code=ERROR.LINE_MALFORMED,
            line=line_number,
        )
    raw_time, user, raw_x, raw_y, raw_index, raw_action = fields

    try:
        timestamp = datetime.strptime(raw_time.strip(), LOG_DATE_FORMAT)
    except ValueError as e:
        raise DataError(
            f"malformed timestamp: {e}",
            code=ERROR.TIMESTAMP_INVALID,
            line=line_number,
            field="timestamp",
            value=raw_time,
        ) from e

    coords = []
    for name, raw in (("x", raw_x), ("y", raw_y)):
        try:
            coords.append(int(raw))
        except ValueError as e:
            raise DataError(
                f"malformed coordinate: {raw!r}",
                code=ERROR.LINE_MALFORMED,
                line=line_number,
                field=name,
                value=raw,
            ) from e
    x, y = coords
    if x < 0 or y < 0:
        raise DataError(
            f"negative coordinates ({x}, {y})",
            code=ERROR.POSITION_OUT_OF_BOUNDS,
            line=line_number,
            field="x" if x < 0 else "y",
            value=x if x < 0 else y,
        )

    try:
        index = int(raw_index)
    except ValueError as e:
        raise DataError(
            f"malformed color index: {raw_index!r}",
            code=ERROR.LINE_MALFORMED,
            line=line_number,
            field="color_index",
            value=raw_index,
        ) from e
    if index < TRANSPARENT_INDEX:
        raise DataError(
            f"negative color index {index}",
            code=ERROR.COLOR_OUT_OF_RANGE,
            line=line_number,
            field="color_index",
            value=index,
        )

    try:
        action = ActionKind.parse(raw_action)
    except ValueError as e:
        raise DataError(
            str(e),
            code=ERROR.LINE_MALFORMED,
            line=line_number,
            field="action",
            value=raw_action,
        ) from e

    return Event(
        timestamp=timestamp,
        x=x,
        y=y,
        color_index=None if index == TRANSPARENT_INDEX else index,
        action=action,
        user=user.strip(),
    )


def iter_lines_events(
    lines: Iterable[str],
    errors: Optional[DataErrorLog] = None,
) -> Iterator[tuple[int, Event]]:
    """
    Lazily parse log lines, yielding (line_number, event).

    Blank lines are ignored. Malformed lines go through the error log
    (raised when no log is given).
    """
    for line_number, raw in enumerate(lines, start=1):
        if not raw.strip():
            continue
        try:
            yield line_number, parse_log_line(raw, line_number)
        except DataError as err:
            if errors is None:
                raise
            errors.report(err)


def open_log(source: Path | str) -> IO[str]:
    if str(source) in STDIN_ALIASES:
        return sys.stdin
    path = Path(source)
    if not path.is_file():
        raise FileNotFoundError(f"Log not found: {path}")
    return open(path, "r", encoding="utf8", newline="")


def iter_log_events(
    source: Path | str,
    errors: Optional[DataErrorLog] = None,
) -> Iterator[tuple[int, Event]]:
    """Stream (line_number, event) pairs from a log file (or stdin)."""
    f = open_log(source)
    try:
        yield from iter_lines_events(f, errors)
    finally:
        if f is not sys.stdin:
            f.close()


def format_log_line(event: Event) -> str:
    index = TRANSPARENT_INDEX if event.color_index is None else event.color_index
    return "\t".join(
        [
            event.format_timestamp(),
            event.user,
            str(event.x),
            str(event.y),
            str(index),
            event.action.value,
        ]
    )


def write_log(events: Iterable[Event], out: IO[str]) -> int:
    """Write events in log format; returns the number of lines written."""
    count = 0
    for event in events:
        out.write(format_log_line(event))
        out.write("\n")
        count += 1
    return count
