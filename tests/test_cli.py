from __future__ import annotations

from pathlib import Path

import cv2
import pytest
from click.testing import CliRunner

from main import cli
from pxlsrender.errors import EXIT_CODE_CONFIGURATION, EXIT_CODE_DATA, EXIT_CODE_SINK

LINES = [
    "2021-06-01 12:00:00,000\thash-a\t0\t0\t3\tuser place",
    "2021-06-01 12:01:00,000\thash-b\t1\t0\t5\tuser place",
    "2021-06-01 12:02:00,000\thash-a\t1\t0\t-1\tuser undo",
    "2021-06-01 12:03:00,000\thash-c\t2\t1\t7\tmod overwrite",
]


def _write_log(tmp: Path, lines: list[str] = LINES) -> Path:
    p = tmp / "pixels.log"
    p.write_text("\n".join(lines) + "\n", encoding="utf8")
    return p


def test_render_screenshot_png(tmp_path: Path) -> None:
    log = _write_log(tmp_path)
    out = tmp_path / "final.png"
    result = CliRunner().invoke(cli, ["render", str(log), "--width", "4", "--height", "2", "-o", str(out), "-q"])
    assert result.exit_code == 0, result.output
    img = cv2.imread(str(out), cv2.IMREAD_UNCHANGED)
    assert img.shape == (2, 4, 4)


def test_render_raw_to_stdout(tmp_path: Path) -> None:
    log = _write_log(tmp_path)
    args = ["render", str(log), "--width", "4", "--height", "2", "--format", "raw", "--step", "1m", "-q"]
    result = CliRunner().invoke(cli, args)
    assert result.exit_code == 0
    # Frames at +0, +1m, +2m and the final frame at +3m
    assert len(result.stdout_bytes) == 4 * (4 * 2 * 4)

    threaded = CliRunner().invoke(cli, args + ["--threaded"])
    assert threaded.exit_code == 0
    assert threaded.stdout_bytes == result.stdout_bytes


def test_render_image_sequence_with_region(tmp_path: Path) -> None:
    log = _write_log(tmp_path)
    out = tmp_path / "frames" / "f.png"
    result = CliRunner().invoke(
        cli,
        ["render", str(log), "--width", "4", "--height", "2", "--step", "2m", "--region", "0,0,1,0",
         "--style", "activity", "-o", str(out), "-q"],
    )
    assert result.exit_code == 0, result.output
    written = sorted((tmp_path / "frames").glob("f_*.png"))
    assert [p.name for p in written] == ["f_00000.png", "f_00001.png", "f_00002.png"]
    assert cv2.imread(str(written[0]), cv2.IMREAD_UNCHANGED).shape == (1, 2, 4)


def test_render_unknown_style_is_configuration_error(tmp_path: Path) -> None:
    log = _write_log(tmp_path)
    out = tmp_path / "final.png"
    result = CliRunner().invoke(cli, ["render", str(log), "--width", "4", "--height", "2", "--style", "sepia", "-o", str(out)])
    assert result.exit_code == EXIT_CODE_CONFIGURATION
    assert "unknown style" in result.output
    assert not out.exists()


def test_render_missing_canvas_size(tmp_path: Path) -> None:
    result = CliRunner().invoke(cli, ["render", str(_write_log(tmp_path)), "-q"])
    assert result.exit_code == EXIT_CODE_CONFIGURATION


def test_render_data_error_policy(tmp_path: Path) -> None:
    log = _write_log(tmp_path, LINES + ["2021-06-01 12:04:00,000\thash-d\t0\t1\t99\tuser place"])
    out = tmp_path / "final.png"
    base = ["render", str(log), "--width", "4", "--height", "2", "-o", str(out)]

    lenient = CliRunner().invoke(cli, base)
    assert lenient.exit_code == 0
    assert "1 event(s) skipped" in lenient.output

    out.unlink()
    strict = CliRunner().invoke(cli, base + ["--quit-on-soft-errors"])
    assert strict.exit_code == EXIT_CODE_DATA
    assert "line 5" in strict.output


def test_render_no_clobber(tmp_path: Path) -> None:
    log = _write_log(tmp_path)
    out = tmp_path / "final.png"
    out.write_bytes(b"keep")
    result = CliRunner().invoke(cli, ["render", str(log), "--width", "4", "--height", "2", "-o", str(out), "-n", "-q"])
    assert result.exit_code == EXIT_CODE_SINK
    assert out.read_bytes() == b"keep"


def test_render_dry_run_writes_nothing(tmp_path: Path) -> None:
    log = _write_log(tmp_path)
    out = tmp_path / "final.png"
    result = CliRunner().invoke(cli, ["render", str(log), "--width", "4", "--height", "2", "--step", "15m",
                                      "-o", str(out), "--dry-run"])
    assert result.exit_code == 0, result.output
    assert "Mode: interval, every 15m" in result.output
    assert "Dry run" in result.output
    assert not out.exists()


def test_render_with_config_file(tmp_path: Path) -> None:
    log = _write_log(tmp_path)
    cfg = tmp_path / "render.yaml"
    cfg.write_text("canvas:\n  width: 4\n  height: 2\nrender:\n  style: heat\n", encoding="utf8")
    out = tmp_path / "heat.png"
    result = CliRunner().invoke(cli, ["render", str(log), "-c", str(cfg), "-o", str(out), "-q"])
    assert result.exit_code == 0, result.output
    assert out.is_file()


def test_filter_command(tmp_path: Path) -> None:
    log = _write_log(tmp_path)
    out = tmp_path / "reduced.log"
    result = CliRunner().invoke(cli, ["filter", str(log), "-o", str(out), "--action", "place", "--user", "hash-a", "-q"])
    assert result.exit_code == 0, result.output
    assert out.read_text(encoding="utf8") == LINES[0] + "\n"


def test_filter_command_inclusive_time_bounds(tmp_path: Path) -> None:
    log = _write_log(tmp_path)
    out = tmp_path / "reduced.log"
    result = CliRunner().invoke(
        cli,
        ["filter", str(log), "-o", str(out), "--after", "2021-06-01 12:01:00", "--before", "2021-06-01 12:02:00", "-q"],
    )
    assert result.exit_code == 0, result.output
    assert out.read_text(encoding="utf8").splitlines() == LINES[1:3]


def test_filter_command_bad_region(tmp_path: Path) -> None:
    result = CliRunner().invoke(cli, ["filter", str(_write_log(tmp_path)), "-o", str(tmp_path / "x.log"),
                                      "--filter-region", "3,3,1,1"])
    assert result.exit_code == EXIT_CODE_CONFIGURATION


def test_info_command(tmp_path: Path) -> None:
    result = CliRunner().invoke(cli, ["info", str(_write_log(tmp_path)), "-q"])
    assert result.exit_code == 0, result.output
    assert "Events: 4" in result.output
    assert "Duration: 3m" in result.output
    assert "canvas >= 3x2" in result.output
    assert "place: 2" in result.output


@pytest.mark.parametrize("command", ["render", "filter", "info"])
def test_missing_log(tmp_path: Path, command: str) -> None:
    args = [command, str(tmp_path / "missing.log")]
    if command == "render":
        args += ["--width", "2", "--height", "2"]
    if command == "filter":
        args += ["-o", str(tmp_path / "out.log")]
    result = CliRunner().invoke(cli, args)
    assert result.exit_code == EXIT_CODE_CONFIGURATION
