from __future__ import annotations

from datetime import datetime

import numpy as np
import pytest

from pxlsrender.canvas.state import CanvasState, Cell
from pxlsrender.errors import ERROR, ConfigurationError
from pxlsrender.events.model import ActionKind, Event
from pxlsrender.render.palette import Palette
from pxlsrender.render.styles import ACTION_COLORS, Style, color_for, resolve

RED = (255, 0, 0, 255)
GREEN = (0, 255, 0, 255)
BLUE = (0, 0, 255, 255)
YELLOW = (255, 255, 0, 255)
WHITE = (255, 255, 255, 255)
BLACK = (0, 0, 0, 255)
PALETTE = Palette([RED, GREEN, BLUE, YELLOW])
T = datetime(2021, 6, 1, 12, 0, 0)


def _single_place_state() -> CanvasState:
    state = CanvasState(3, 2, palette_size=len(PALETTE))
    state.apply(Event(timestamp=T, x=0, y=0, color_index=3, action=ActionKind.PLACE, user="u"))
    return state


def _pixels(frame: np.ndarray) -> list:
    return [[tuple(p) for p in row] for row in frame.tolist()]


def test_normal_style_single_place() -> None:
    state = _single_place_state()
    frame = resolve(state.view(), Style.NORMAL, PALETTE, state.latest_time, background=WHITE)
    assert frame.shape == (2, 3, 4)
    assert frame.dtype == np.uint8
    assert _pixels(frame) == [
        [YELLOW, WHITE, WHITE],
        [WHITE, WHITE, WHITE],
    ]


def test_virgin_style_single_place() -> None:
    state = _single_place_state()
    frame = resolve(state.view(), Style.VIRGIN, PALETTE, state.latest_time, background=WHITE)
    assert not state.cell(0, 0).is_virgin
    assert _pixels(frame) == [
        [BLACK, WHITE, WHITE],
        [WHITE, WHITE, WHITE],
    ]


def test_normal_style_out_of_palette_index_shows_background() -> None:
    cells = Cell(current_color_index=7).to_arrays()
    frame = resolve(cells, Style.NORMAL, PALETTE, 0, background=GREEN)
    assert tuple(frame[0, 0]) == GREEN


def test_background_image_is_used_per_cell() -> None:
    state = CanvasState(2, 1)
    bg = np.array([[RED, BLUE]], dtype=np.uint8)
    frame = resolve(state.view(), Style.ACTION, PALETTE, 0, background=bg)
    np.testing.assert_array_equal(frame, bg)


def test_color_for_is_idempotent() -> None:
    cell = Cell(current_color_index=2, last_update_time=1234, placement_count=3,
                last_action_kind=ActionKind.PLACE, is_virgin=False, first_placed_time=1000)
    for style in Style:
        first = color_for(cell, style, PALETTE, 2000, origin_time=0)
        second = color_for(cell, style, PALETTE, 2000, origin_time=0)
        assert first == second
        assert len(first) == 4


def test_resolve_does_not_mutate_state() -> None:
    state = _single_place_state()
    snapshot = {k: v.copy() for k, v in state.view()._asdict().items()}
    for style in Style:
        resolve(state.view(), style, PALETTE, state.latest_time, origin_time=state.origin_time)
    for key, arr in state.view()._asdict().items():
        np.testing.assert_array_equal(arr, snapshot[key])


def test_heat_style() -> None:
    assert color_for(Cell(placement_count=0), Style.HEAT, PALETTE, 0) == BLACK
    assert color_for(Cell(placement_count=25), Style.HEAT, PALETTE, 0) == (102, 46, 46, 255)
    assert color_for(Cell(placement_count=500), Style.HEAT, PALETTE, 0) == (205, 92, 92, 255)
    assert color_for(Cell(placement_count=5), Style.HEAT, PALETTE, 0, heat_max=5) == (205, 92, 92, 255)


def test_activity_style() -> None:
    assert color_for(Cell(placement_count=0), Style.ACTIVITY, PALETTE, 0) == (11, 21, 97, 255)
    assert color_for(Cell(placement_count=5), Style.ACTIVITY, PALETTE, 0) == (21, 88, 145, 255)
    assert color_for(Cell(placement_count=10), Style.ACTIVITY, PALETTE, 0) == (32, 156, 194, 255)
    assert color_for(Cell(placement_count=100_000), Style.ACTIVITY, PALETTE, 0) == (240, 101, 243, 255)


@pytest.mark.parametrize("kind", list(ActionKind))
def test_action_style(kind: ActionKind) -> None:
    cell = Cell(last_action_kind=kind, last_update_time=0, placement_count=1)
    assert color_for(cell, Style.ACTION, PALETTE, 0) == ACTION_COLORS[kind]


def test_action_style_untouched_shows_background() -> None:
    assert color_for(Cell(), Style.ACTION, PALETTE, 0, background=GREEN) == GREEN


@pytest.mark.parametrize(
    "style,last_update,expected",
    [
        (Style.MILLISECONDS, 500, RED),
        (Style.MILLISECONDS, 1000, BLACK),
        (Style.SECONDS, 30_000, GREEN),
        (Style.MINUTES, 1_800_000, BLUE),
        (Style.MINUTES, 0, BLACK),
    ],
)
def test_placement_time_styles(style: Style, last_update: int, expected: tuple) -> None:
    cell = Cell(last_update_time=last_update, placement_count=1)
    assert color_for(cell, style, PALETTE, 0) == expected


def test_placement_time_styles_untouched_show_background() -> None:
    for style in (Style.MILLISECONDS, Style.SECONDS, Style.MINUTES, Style.COMBINED):
        assert color_for(Cell(), style, PALETTE, 0, background=YELLOW) == YELLOW


def test_combined_style_splits_channels() -> None:
    cell = Cell(last_update_time=500, placement_count=1)
    assert color_for(cell, Style.COMBINED, PALETTE, 0) == (127, 2, 0, 255)


def test_age_style_older_is_darker() -> None:
    def age(first_placed: int) -> tuple:
        cell = Cell(first_placed_time=first_placed, is_virgin=False, placement_count=1)
        return color_for(cell, Style.AGE, PALETTE, 1000, origin_time=0)

    assert age(1000) == WHITE
    assert age(500) == BLUE
    assert age(0) == BLACK
    assert color_for(Cell(), Style.AGE, PALETTE, 1000, origin_time=0, background=RED) == RED


def test_age_style_zero_span() -> None:
    cell = Cell(first_placed_time=1000, is_virgin=False, placement_count=1)
    assert color_for(cell, Style.AGE, PALETTE, 1000, origin_time=1000) == WHITE


def test_style_parse() -> None:
    assert Style.parse("Heat") is Style.HEAT
    assert Style.parse(Style.AGE) is Style.AGE
    with pytest.raises(ConfigurationError) as exc:
        Style.parse("sepia")
    assert exc.value.code == ERROR.STYLE_UNKNOWN
