"""
Configuration loading and validation.

Defaults live in defaults.yaml next to this module. A user YAML file is
deep-merged over them, then CLI overrides on top, and the result is
validated into RenderSettings. Any problem is reported as a
ConfigurationError before replay begins.
"""

import re
from datetime import datetime
from pathlib import Path
from typing import Literal, Optional

import cv2
import numpy as np
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from pxlsrender.errors import ERROR, ConfigurationError
from pxlsrender.events.filters import FilterConfig, load_user_file
from pxlsrender.events.model import Region
from pxlsrender.render.styles import HEAT_MAX, Style


DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

_DURATION_UNITS = {"ms": 1, "s": 1000, "m": 60_000, "h": 3_600_000, "d": 86_400_000}
_DURATION_PART = re.compile(r"(\d+)(ms|s|m|h|d)")


def load_config(config_path: Path | None = None) -> dict:
    """Load the default configuration, optionally merged with a custom config."""
    with open(DEFAULT_CONFIG_PATH, encoding="utf8") as f:
        config = yaml.safe_load(f)

    if config_path:
        config_path = Path(config_path)
        if not config_path.is_file():
            raise ConfigurationError(f"config not found: {config_path}")
        try:
            with open(config_path, encoding="utf8") as f:
                custom_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"invalid YAML in {config_path}: {e}") from e
        if not isinstance(custom_config, dict):
            raise ConfigurationError(f"config {config_path} must be a mapping")
        config = deep_merge(config, custom_config)

    return config


def deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override dict into base dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def parse_duration(value) -> Optional[int]:
    """
    Parse a duration into milliseconds.

    Accepts an integer number of ms, or a string of unit-suffixed parts such
    as "500ms", "30s", "15m", "2h" or "1h30m". A bare number string is ms.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)

    text = str(value).strip().lower().replace(" ", "")
    if text.isdigit():
        return int(text)
    parts = _DURATION_PART.findall(text)
    if not parts or "".join(n + u for n, u in parts) != text:
        raise ValueError(f"invalid duration: {value!r} (expected e.g. 500ms, 30s, 15m, 2h)")
    return sum(int(n) * _DURATION_UNITS[u] for n, u in parts)


def format_duration(ms: int) -> str:
    for unit in ("d", "h", "m", "s"):
        size = _DURATION_UNITS[unit]
        if ms >= size and ms % size == 0:
            return f"{ms // size}{unit}"
    return f"{ms}ms"


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CanvasSettings(_Section):
    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)
    background: Optional[Path] = None
    background_color: tuple[int, int, int, int] = (255, 255, 255, 255)

    @field_validator("background_color", mode="before")
    @classmethod
    def _rgba(cls, value):
        values = list(value)
        if len(values) == 3:
            values.append(255)
        if len(values) != 4 or any(not 0 <= int(v) <= 255 for v in values):
            raise ValueError(f"expected RGB or RGBA values within 0..255, found {value!r}")
        return tuple(int(v) for v in values)


class PaletteSettings(_Section):
    path: Optional[Path] = None


class RenderOptions(_Section):
    style: Style = Style.NORMAL
    step: Optional[int] = Field(default=None, gt=0)  # ms
    step_events: Optional[int] = Field(default=None, gt=0)
    screenshot: bool = False
    skip: int = Field(default=0, ge=0)
    final_frame: bool = True
    region: Optional[Region] = None
    heat_max: int = Field(default=HEAT_MAX, gt=0)

    @field_validator("style", mode="before")
    @classmethod
    def _parse_style(cls, value):
        return Style.parse(value)

    @field_validator("step", mode="before")
    @classmethod
    def _parse_step(cls, value):
        return parse_duration(value)

    @field_validator("region", mode="before")
    @classmethod
    def _parse_region(cls, value):
        return None if value is None else Region.parse(value)

    @model_validator(mode="after")
    def _check_mode(self) -> "RenderOptions":
        if self.step is not None and self.step_events is not None:
            raise ValueError("render.step and render.step_events are mutually exclusive")
        return self

    @property
    def is_screenshot(self) -> bool:
        """Without a step only the final frame is rendered."""
        return self.screenshot or (self.step is None and self.step_events is None)

    @property
    def mode(self) -> str:
        if self.is_screenshot:
            return "screenshot"
        return "events" if self.step_events is not None else "interval"


class OutputSettings(_Section):
    path: Optional[str] = None
    format: Literal["png", "raw", "mp4"] = "png"
    fps: float = Field(default=30.0, gt=0)
    crf: int = Field(default=23, ge=0, le=51)
    no_clobber: bool = False
    dry_run: bool = False


class ProcessingSettings(_Section):
    quit_on_soft_errors: bool = False
    threaded: bool = False
    queue_size: int = Field(default=4096, gt=0)
    progress: bool = True


class FilterSettings(_Section):
    after: Optional[datetime] = None
    before: Optional[datetime] = None
    colors: list[int] = Field(default_factory=list)
    region: Optional[Region] = None
    actions: list[str] = Field(default_factory=list)
    users: list[str] = Field(default_factory=list)
    users_file: Optional[Path] = None

    @field_validator("region", mode="before")
    @classmethod
    def _parse_region(cls, value):
        return None if value is None else Region.parse(value)

    @field_validator("colors", "actions", "users", mode="before")
    @classmethod
    def _none_is_empty(cls, value):
        return [] if value is None else value

    def to_filter_config(self) -> FilterConfig:
        users = set(self.users)
        if self.users_file is not None:
            try:
                users |= load_user_file(self.users_file)
            except FileNotFoundError as e:
                raise ConfigurationError(str(e)) from e
        try:
            return FilterConfig(
                after=self.after,
                before=self.before,
                colors=frozenset(self.colors),
                region=self.region,
                actions=frozenset(self.actions),
                users=frozenset(users),
            )
        except ValidationError as e:
            raise ConfigurationError(f"invalid filter: {e}") from e


class RenderSettings(_Section):
    """Validated configuration for one run."""
    canvas: CanvasSettings = Field(default_factory=CanvasSettings)
    palette: PaletteSettings = Field(default_factory=PaletteSettings)
    render: RenderOptions = Field(default_factory=RenderOptions)
    output: OutputSettings = Field(default_factory=OutputSettings)
    processing: ProcessingSettings = Field(default_factory=ProcessingSettings)
    filter: FilterSettings = Field(default_factory=FilterSettings)

    @classmethod
    def from_dict(cls, data: dict) -> "RenderSettings":
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"invalid configuration:\n{e}") from e


def load_settings(config_path: Path | None = None, overrides: Optional[dict] = None) -> RenderSettings:
    """Defaults <- user config file <- overrides, validated."""
    config = load_config(config_path)
    if overrides:
        config = deep_merge(config, overrides)
    return RenderSettings.from_dict(config)


def load_background(path: Path | str) -> np.ndarray:
    """
    Read a seed image as RGBA.

    Returns:
        (height, width, 4) uint8 array
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"background not found: {path}")
    img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise ConfigurationError(f"cannot decode background image: {path}")

    if img.dtype != np.uint8:
        img = (img / 257).astype(np.uint8)
    if img.ndim == 2:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2RGBA)
    if img.shape[2] == 3:
        return cv2.cvtColor(img, cv2.COLOR_BGR2RGBA)
    return cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)


def canvas_size(canvas: CanvasSettings, background: Optional[np.ndarray] = None) -> tuple[int, int]:
    """Resolve (width, height) from settings and/or the background image."""
    if background is not None:
        bg_h, bg_w = background.shape[:2]
        if (canvas.width is not None and canvas.width != bg_w) or (
            canvas.height is not None and canvas.height != bg_h
        ):
            raise ConfigurationError(
                f"canvas {canvas.width}x{canvas.height} doesn't match background {bg_w}x{bg_h}",
                code=ERROR.CANVAS_MISMATCH,
            )
        return bg_w, bg_h
    if canvas.width is None or canvas.height is None:
        raise ConfigurationError("canvas width and height are required without a background image")
    return canvas.width, canvas.height
