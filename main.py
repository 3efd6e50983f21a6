#!/usr/bin/env python3
"""
pxlsrender - CLI Entry Point

Usage:
    pxlsrender render <log> [options]
    pxlsrender filter <log> -o <out> [clauses]
    pxlsrender info <log>
"""

import sys
from pathlib import Path

import click

from pxlsrender import __version__
from pxlsrender.errors import EXIT_CODE_CONFIGURATION, PxlsRenderError


def _fail(message: str, exit_code: int):
    click.echo(f"Error: {message}", err=True)
    sys.exit(exit_code)


def _filter_overrides(after, before, colors, region, actions, users, users_file) -> dict:
    """Filter clauses given on the command line, as a config section."""
    section = {}
    if after:
        section["after"] = after
    if before:
        section["before"] = before
    if colors:
        section["colors"] = list(colors)
    if region:
        section["region"] = region
    if actions:
        section["actions"] = list(actions)
    if users:
        section["users"] = list(users)
    if users_file:
        section["users_file"] = users_file
    return section


def filter_options(f):
    """Filter clause options shared by the render and filter commands."""
    options = [
        click.option("--after", help="Keep events at or after this time (YYYY-MM-DD HH:MM:SS)"),
        click.option("--before", help="Keep events at or before this time"),
        click.option("--color", "colors", type=int, multiple=True, help="Keep events with this color index (repeatable)"),
        click.option("--filter-region", help="Keep events inside x1,y1,x2,y2"),
        click.option("--action", "actions", multiple=True, help="Keep events of this action, e.g. place, undo (repeatable)"),
        click.option("--user", "users", multiple=True, help="Keep events by this user hash or key (repeatable)"),
        click.option("--users-file", type=click.Path(exists=True, dir_okay=False), help="File of user hashes/keys, one per line"),
    ]
    for option in reversed(options):
        f = option(f)
    return f


@click.group()
@click.version_option(version=__version__)
def cli():
    """pxlsrender - Replay pixel canvas logs into images, raw frames or video."""
    pass


@cli.command()
@click.argument("log_path", type=click.Path(allow_dash=True))
@click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False), help="Custom config file")
@click.option("--output", "-o", help="Output path, template ({index}, {timestamp}) or '-' for stdout")
@click.option("--format", "fmt", type=click.Choice(["png", "raw", "mp4"]), default=None, help="Output format")
@click.option("--style", "-s", help="Visualization style")
@click.option("--step", help="Log time between frames, e.g. 30s, 15m, 2h (ms when unitless)")
@click.option("--step-events", type=int, default=None, help="Applied events between frames")
@click.option("--screenshot", is_flag=True, help="Render only the final frame")
@click.option("--skip", type=int, default=None, help="Drop the first N frames")
@click.option("--no-final", is_flag=True, help="Don't emit the final frame")
@click.option("--region", help="Render window x1,y1,x2,y2 (inclusive)")
@click.option("--width", type=int, default=None, help="Canvas width")
@click.option("--height", type=int, default=None, help="Canvas height")
@click.option("--background", "-b", type=click.Path(exists=True, dir_okay=False), help="Seed image")
@click.option("--palette", "-p", type=click.Path(exists=True, dir_okay=False), help="Palette file")
@click.option("--fps", type=float, default=None, help="Video frame rate (mp4)")
@click.option("--no-clobber", "-n", is_flag=True, help="Refuse to overwrite existing output")
@click.option("--dry-run", is_flag=True, help="Validate and print the plan without rendering")
@click.option("--quit-on-soft-errors", is_flag=True, help="Abort on the first bad event instead of skipping it")
@click.option("--threaded", is_flag=True, help="Parse the log on a separate thread")
@click.option("--quiet", "-q", is_flag=True, help="No status output or progress bars")
@filter_options
def render(
    log_path, config, output, fmt, style, step, step_events, screenshot, skip, no_final,
    region, width, height, background, palette, fps, no_clobber, dry_run,
    quit_on_soft_errors, threaded, quiet,
    after, before, colors, filter_region, actions, users, users_file,
):
    """Render a canvas log.

    LOG_PATH: Tab-separated canvas log ('-' for stdin)
    """
    from pxlsrender.pipeline import RenderPipeline
    from pxlsrender.settings import load_settings

    overrides: dict = {"canvas": {}, "palette": {}, "render": {}, "output": {}, "processing": {}}
    if width is not None:
        overrides["canvas"]["width"] = width
    if height is not None:
        overrides["canvas"]["height"] = height
    if background:
        overrides["canvas"]["background"] = background
    if palette:
        overrides["palette"]["path"] = palette
    if style:
        overrides["render"]["style"] = style
    if step:
        overrides["render"]["step"] = step
    if step_events is not None:
        overrides["render"]["step_events"] = step_events
    if screenshot:
        overrides["render"]["screenshot"] = True
    if skip is not None:
        overrides["render"]["skip"] = skip
    if no_final:
        overrides["render"]["final_frame"] = False
    if region:
        overrides["render"]["region"] = region
    if output:
        overrides["output"]["path"] = output
    if fmt:
        overrides["output"]["format"] = fmt
    if fps is not None:
        overrides["output"]["fps"] = fps
    if no_clobber:
        overrides["output"]["no_clobber"] = True
    if dry_run:
        overrides["output"]["dry_run"] = True
    if quit_on_soft_errors:
        overrides["processing"]["quit_on_soft_errors"] = True
    if threaded:
        overrides["processing"]["threaded"] = True
    if quiet:
        overrides["processing"]["progress"] = False
    overrides["filter"] = _filter_overrides(after, before, colors, filter_region, actions, users, users_file)

    try:
        settings = load_settings(Path(config) if config else None, overrides)
        result = RenderPipeline(settings, log_path, quiet=quiet).run()
    except PxlsRenderError as e:
        _fail(str(e), e.exit_code)
    except FileNotFoundError as e:
        _fail(str(e), EXIT_CODE_CONFIGURATION)

    if not result.dry_run and not quiet:
        click.echo("Render complete!", err=True)


@cli.command("filter")
@click.argument("log_path", type=click.Path(allow_dash=True))
@click.option("--output", "-o", required=True, help="Output log path ('-' for stdout)")
@click.option("--no-clobber", "-n", is_flag=True, help="Refuse to overwrite existing output")
@click.option("--quit-on-soft-errors", is_flag=True, help="Abort on the first malformed line")
@click.option("--quiet", "-q", is_flag=True, help="No status output")
@filter_options
def filter_command(
    log_path, output, no_clobber, quit_on_soft_errors, quiet,
    after, before, colors, filter_region, actions, users, users_file,
):
    """Write the events of a log that match the given clauses."""
    from pxlsrender.pipeline import echo, filter_log
    from pxlsrender.settings import FilterSettings
    from pydantic import ValidationError

    section = _filter_overrides(after, before, colors, filter_region, actions, users, users_file)
    try:
        try:
            filter_config = FilterSettings(**section).to_filter_config()
        except ValidationError as e:
            _fail(f"invalid filter:\n{e}", EXIT_CODE_CONFIGURATION)
        count, errors = filter_log(
            log_path,
            output,
            filter_config,
            quit_on_soft_errors=quit_on_soft_errors,
            no_clobber=no_clobber,
            quiet=quiet,
        )
    except PxlsRenderError as e:
        _fail(str(e), e.exit_code)
    except FileNotFoundError as e:
        _fail(str(e), EXIT_CODE_CONFIGURATION)

    echo(f"Wrote {count} events to {output}", quiet)
    summary = errors.summary()
    if summary:
        echo(f"Warning: {summary}", quiet)


@cli.command()
@click.argument("log_path", type=click.Path(allow_dash=True))
@click.option("--quiet", "-q", is_flag=True, help="No progress bar")
def info(log_path, quiet):
    """Summarize a log: event count, time span, bounds and actions."""
    from pxlsrender.errors import DataErrorLog
    from pxlsrender.pipeline import summarize_log

    errors = DataErrorLog(quiet=quiet)
    try:
        summary = summarize_log(log_path, errors, quiet=quiet)
    except PxlsRenderError as e:
        _fail(str(e), e.exit_code)
    except FileNotFoundError as e:
        _fail(str(e), EXIT_CODE_CONFIGURATION)

    click.echo(f"pxlsrender v{__version__}")
    click.echo("-" * 40)
    for line in summary.lines():
        click.echo(line)
    if errors.summary():
        click.echo(f"Malformed: {len(errors)} line(s)")


if __name__ == "__main__":
    cli()
