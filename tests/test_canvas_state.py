from __future__ import annotations

from datetime import datetime, timedelta

import numpy as np
import pytest

from pxlsrender.canvas.state import NO_COLOR, CanvasState, Cell
from pxlsrender.errors import ERROR, ConfigurationError, DataError
from pxlsrender.events.model import ActionKind, Event, Region, to_millis

T0 = datetime(2021, 6, 1, 12, 0, 0)


def _event(seconds: float = 0, x: int = 0, y: int = 0, color: int | None = 1,
           action: ActionKind = ActionKind.PLACE) -> Event:
    return Event(timestamp=T0 + timedelta(seconds=seconds), x=x, y=y, color_index=color, action=action, user="u")


def test_new_canvas_is_virgin_and_untouched() -> None:
    state = CanvasState(3, 2)
    cell = state.cell(2, 1)
    assert cell == Cell()
    assert state.color.shape == (2, 3)
    assert state.origin_time is None


def test_place_updates_cell() -> None:
    state = CanvasState(4, 4, palette_size=16)
    e = _event(1.5, x=2, y=3, color=7)
    state.apply(e)

    cell = state.cell(2, 3)
    assert cell.current_color_index == 7
    assert cell.last_update_time == to_millis(e.timestamp)
    assert cell.placement_count == 1
    assert cell.last_action_kind is ActionKind.PLACE
    assert not cell.is_virgin
    assert cell.first_placed_time == to_millis(e.timestamp)
    assert state.origin_time == state.latest_time == to_millis(e.timestamp)


def test_first_placed_time_is_set_once() -> None:
    state = CanvasState(1, 1)
    state.apply(_event(0, color=1))
    state.apply(_event(10, color=2, action=ActionKind.OVERWRITE))
    cell = state.cell(0, 0)
    assert cell.first_placed_time == to_millis(T0)
    assert cell.current_color_index == 2
    assert cell.placement_count == 2


def test_undo_restores_logged_color_without_painting() -> None:
    state = CanvasState(2, 1)
    state.apply(_event(0, x=1, color=None, action=ActionKind.UNDO))
    cell = state.cell(1, 0)
    assert cell.current_color_index is None
    assert cell.is_virgin
    assert cell.placement_count == 1
    assert cell.last_action_kind is ActionKind.UNDO


def test_out_of_bounds_event_is_rejected_before_mutation() -> None:
    state = CanvasState(4, 4)
    before = state.view()._asdict()
    before = {k: v.copy() for k, v in before.items()}
    with pytest.raises(DataError) as exc:
        state.apply(_event(x=4, y=0), line=9)
    assert exc.value.code == ERROR.POSITION_OUT_OF_BOUNDS
    assert exc.value.field == "x"
    assert exc.value.line == 9
    for key, arr in state.view()._asdict().items():
        np.testing.assert_array_equal(arr, before[key])
    assert state.applied == 0


def test_color_index_outside_palette_is_rejected() -> None:
    state = CanvasState(2, 2, palette_size=16)
    state.apply(_event(0, color=4))
    with pytest.raises(DataError) as exc:
        state.apply(_event(1, color=99))
    assert exc.value.code == ERROR.COLOR_OUT_OF_RANGE
    assert exc.value.field == "color_index"
    assert state.cell(0, 0).current_color_index == 4
    assert state.cell(0, 0).placement_count == 1


def test_seed_sets_only_colors() -> None:
    state = CanvasState(2, 2)
    state.seed(np.array([[1, NO_COLOR], [3, 0]]))
    assert state.cell(0, 0).current_color_index == 1
    assert state.cell(1, 0).current_color_index is None
    assert state.cell(0, 1) == Cell(current_color_index=3)
    assert state.virgin.all()
    assert state.count.sum() == 0


def test_seed_shape_mismatch() -> None:
    state = CanvasState(2, 2)
    with pytest.raises(ConfigurationError) as exc:
        state.seed(np.zeros((3, 2), dtype=np.int32))
    assert exc.value.code == ERROR.CANVAS_MISMATCH


def test_view_single_cell_region_is_a_view() -> None:
    state = CanvasState(5, 5)
    state.apply(_event(x=3, y=2, color=6))
    cells = state.view(Region(x1=3, y1=2, x2=3, y2=2))
    assert cells.shape == (1, 1)
    assert cells.color[0, 0] == 6
    assert np.shares_memory(cells.color, state.color)


def test_view_outside_canvas_raises() -> None:
    state = CanvasState(5, 5)
    with pytest.raises(ConfigurationError) as exc:
        state.view(Region(x1=0, y1=0, x2=5, y2=1))
    assert exc.value.code == ERROR.REGION_INVALID


def test_invalid_canvas_size() -> None:
    with pytest.raises(ConfigurationError):
        CanvasState(0, 10)


def test_cell_time_fractions() -> None:
    cell = Cell(last_update_time=90_500)
    assert cell.intra_second_fraction == pytest.approx(0.5)
    assert cell.intra_minute_fraction == pytest.approx(30_500 / 60_000)
    assert cell.intra_hour_fraction == pytest.approx(90_500 / 3_600_000)
    assert Cell().intra_second_fraction is None


def test_cell_to_arrays_round_trips_through_canvas_layout() -> None:
    state = CanvasState(1, 1)
    state.apply(_event(2, color=3, action=ActionKind.OVERWRITE))
    arrays = state.cell(0, 0).to_arrays()
    for key, arr in state.view()._asdict().items():
        np.testing.assert_array_equal(getattr(arrays, key), arr)
