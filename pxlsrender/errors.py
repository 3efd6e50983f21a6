"""
Error types and soft-error bookkeeping for the replay engine.

Three kinds of failure are distinguished:
    ConfigurationError: bad settings, raised before any replay begins.
    DataError: a single log record cannot be applied (position, color, time).
    SinkError: output could not be written.

Data errors follow a caller-selected policy handled by DataErrorLog.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TypedDict

import click


EXIT_CODE_CONFIGURATION = 2
EXIT_CODE_DATA = 3
EXIT_CODE_SINK = 4


class ErrorRecord(TypedDict, total=False):
    code: str
    message: str
    line: int
    field: str
    value: Any


@dataclass(frozen=True)
class ErrorCodes:
    # Configuration
    CONFIG_INVALID: str = "E_CONFIG_INVALID"
    REGION_INVALID: str = "E_REGION_INVALID"
    STYLE_UNKNOWN: str = "E_STYLE_UNKNOWN"
    CANVAS_MISMATCH: str = "E_CANVAS_MISMATCH"
    PALETTE_INVALID: str = "E_PALETTE_INVALID"

    # Data
    LINE_MALFORMED: str = "E_LINE_MALFORMED"
    TIMESTAMP_INVALID: str = "E_TIMESTAMP_INVALID"
    POSITION_OUT_OF_BOUNDS: str = "E_POSITION_OUT_OF_BOUNDS"
    COLOR_OUT_OF_RANGE: str = "E_COLOR_OUT_OF_RANGE"

    # Output
    OUTPUT_EXISTS: str = "E_OUTPUT_EXISTS"
    OUTPUT_WRITE_FAILED: str = "E_OUTPUT_WRITE_FAILED"


ERROR = ErrorCodes()


def make_error(code: str, message: str, **context: Any) -> ErrorRecord:
    err: ErrorRecord = {"code": code, "message": message}
    for k, v in context.items():
        if v is None:
            continue
        err[k] = v
    return err


class PxlsRenderError(RuntimeError):
    exit_code = 1

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class ConfigurationError(PxlsRenderError):
    exit_code = EXIT_CODE_CONFIGURATION

    def __init__(self, message: str, *, code: str = ERROR.CONFIG_INVALID) -> None:
        super().__init__(message, code=code)


class DataError(PxlsRenderError):
    """A log record that cannot be applied to the canvas."""

    exit_code = EXIT_CODE_DATA

    def __init__(
        self,
        message: str,
        *,
        code: str,
        line: int | None = None,
        field: str | None = None,
        value: Any = None,
    ) -> None:
        self.line = line
        self.field = field
        self.value = value
        location = f"line {line}: " if line is not None else ""
        super().__init__(f"{location}{message}", code=code)
        self.message = message

    def to_record(self) -> ErrorRecord:
        return make_error(self.code or "", self.message, line=self.line, field=self.field, value=self.value)


class SinkError(PxlsRenderError):
    exit_code = EXIT_CODE_SINK

    def __init__(self, message: str, *, code: str = ERROR.OUTPUT_WRITE_FAILED) -> None:
        super().__init__(message, code=code)


class DataErrorLog:
    """Applies the soft-error policy to data errors.

    With quit_on_soft_errors the first error is raised; otherwise it is
    recorded (and echoed to stderr) and the offending event is skipped.
    """

    def __init__(self, quit_on_soft_errors: bool = False, *, quiet: bool = False, max_echo: int = 10) -> None:
        self.quit_on_soft_errors = quit_on_soft_errors
        self.quiet = quiet
        self.max_echo = max_echo
        self.records: list[ErrorRecord] = []

    def __len__(self) -> int:
        return len(self.records)

    def report(self, err: DataError) -> None:
        if self.quit_on_soft_errors:
            raise err
        self.records.append(err.to_record())
        if not self.quiet and len(self.records) <= self.max_echo:
            click.echo(f"Warning: skipped event, {err}", err=True)

    def summary(self) -> str | None:
        if not self.records:
            return None
        by_code: dict[str, int] = {}
        for rec in self.records:
            by_code[rec["code"]] = by_code.get(rec["code"], 0) + 1
        parts = ", ".join(f"{code}={count}" for code, count in sorted(by_code.items()))
        return f"{len(self.records)} event(s) skipped due to data errors ({parts})"
