"""
Output sinks for rendered frames.

Frames are written in the order they arrive, one at a time:
    ImageSequenceSink: one image file per frame (via OpenCV)
    RawStreamSink: raw RGBA bytes to a pipe or file, no framing
    VideoSink: H.264 video via PyAV
"""

import sys
from fractions import Fraction
from pathlib import Path
from typing import BinaryIO, Optional, Protocol

import av
import cv2
import numpy as np

from pxlsrender.errors import ERROR, SinkError
from pxlsrender.events.model import from_millis
from pxlsrender.events.reader import STDOUT_ALIASES


class FrameSink(Protocol):
    def write(self, frame) -> None: ...

    def close(self) -> None: ...


def _refuse_existing(path: Path, no_clobber: bool):
    if no_clobber and path.exists():
        raise SinkError(f"output already exists: {path}", code=ERROR.OUTPUT_EXISTS)


class ImageSequenceSink:
    """Writes each frame to its own image file.

    The path may contain ``{index}`` and ``{timestamp}`` fields (standard
    format spec, e.g. ``frames/{index:05d}.png``). A plain path gets a
    zero-padded index appended to its stem, unless ``single`` is set, in
    which case the path is written as-is.
    """

    def __init__(self, path: Path | str, *, no_clobber: bool = False, single: bool = False):
        self.path = Path(path)
        self.no_clobber = no_clobber
        self.single = single
        self.written: list[Path] = []
        if not self.path.suffix:
            raise SinkError(f"image output needs a file extension: {self.path}")

    def target(self, frame) -> Path:
        text = str(self.path)
        if "{" in text:
            stamp = from_millis(frame.timestamp).strftime("%Y%m%d_%H%M%S")
            return Path(text.format(index=frame.index, timestamp=stamp))
        if self.single:
            return self.path
        return self.path.with_name(f"{self.path.stem}_{frame.index:05d}{self.path.suffix}")

    def write(self, frame):
        out = self.target(frame)
        _refuse_existing(out, self.no_clobber)
        out.parent.mkdir(parents=True, exist_ok=True)

        bgra = cv2.cvtColor(frame.pixels, cv2.COLOR_RGBA2BGRA)
        try:
            ok = cv2.imwrite(str(out), bgra)
        except cv2.error as e:
            raise SinkError(f"failed to write {out}: {e}") from e
        if not ok:
            raise SinkError(f"failed to write {out}")
        self.written.append(out)

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class RawStreamSink:
    """Raw row-major RGBA bytes, back to back; the reader must know the frame size."""

    def __init__(self, target: Path | str | BinaryIO = "-", *, no_clobber: bool = False):
        self._owned = False
        if hasattr(target, "write"):
            self.stream = target
            self.name = getattr(target, "name", "<stream>")
        elif str(target) in STDOUT_ALIASES:
            self.stream = sys.stdout.buffer
            self.name = "<stdout>"
        else:
            path = Path(target)
            _refuse_existing(path, no_clobber)
            path.parent.mkdir(parents=True, exist_ok=True)
            try:
                self.stream = open(path, "wb")
            except OSError as e:
                raise SinkError(f"cannot open {path}: {e}") from e
            self._owned = True
            self.name = str(path)
        self.bytes_written = 0

    def write(self, frame):
        data = frame.to_bytes()
        try:
            self.stream.write(data)
        except BrokenPipeError as e:
            raise SinkError(f"broken pipe while writing to {self.name}") from e
        except OSError as e:
            raise SinkError(f"failed to write to {self.name}: {e}") from e
        self.bytes_written += len(data)

    def close(self):
        try:
            if self._owned:
                self.stream.close()
            else:
                self.stream.flush()
        except BrokenPipeError as e:
            raise SinkError(f"broken pipe while writing to {self.name}") from e

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class VideoSink:
    """Encodes frames into a video file using PyAV."""

    def __init__(
        self,
        output_path: Path | str,
        *,
        fps: float = 30.0,
        codec: str = "h264",
        crf: int = 23,
        no_clobber: bool = False,
    ):
        """
        Args:
            output_path: Path for output video
            fps: Frames per second
            codec: Video codec (h264, hevc, etc.)
            crf: Constant rate factor (quality, lower = better, 18-28 typical)
            no_clobber: Refuse to replace an existing file
        """
        self.output_path = Path(output_path)
        _refuse_existing(self.output_path, no_clobber)
        self.fps = fps
        self.codec = codec
        self.crf = crf
        # The stream is opened on the first frame, once the size is known
        self.container = None
        self.stream = None
        self.width: Optional[int] = None
        self.height: Optional[int] = None

    def _open(self, width: int, height: int):
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        # yuv420p needs even dimensions
        self.width = width - (width % 2) or 2
        self.height = height - (height % 2) or 2
        try:
            self.container = av.open(str(self.output_path), mode="w")
            # Convert fps to Fraction for PyAV compatibility
            fps_fraction = Fraction(self.fps).limit_denominator(10000)
            self.stream = self.container.add_stream(self.codec, rate=fps_fraction)
            self.stream.width = self.width
            self.stream.height = self.height
            self.stream.pix_fmt = "yuv420p"
            self.stream.options = {"crf": str(self.crf)}
        except (OSError, av.error.FFmpegError) as e:
            raise SinkError(f"cannot open video {self.output_path}: {e}") from e

    def write(self, frame):
        if self.container is None:
            self._open(frame.width, frame.height)
        pixels = frame.pixels
        if pixels.shape[:2] != (self.height, self.width):
            pixels = _fit(pixels, self.width, self.height)

        rgb = np.ascontiguousarray(pixels[..., :3])
        av_frame = av.VideoFrame.from_ndarray(rgb, format="rgb24")
        try:
            for packet in self.stream.encode(av_frame):
                self.container.mux(packet)
        except (OSError, av.error.FFmpegError) as e:
            raise SinkError(f"failed to encode frame {frame.index}: {e}") from e

    def close(self):
        """Flush the encoder and close the file."""
        if self.container is None:
            return
        try:
            for packet in self.stream.encode():
                self.container.mux(packet)
        finally:
            self.container.close()
            self.container = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _fit(pixels: np.ndarray, width: int, height: int) -> np.ndarray:
    """Crop (or edge-pad) to the encoder size."""
    out = pixels[:height, :width]
    pad_y = height - out.shape[0]
    pad_x = width - out.shape[1]
    if pad_y or pad_x:
        out = np.pad(out, ((0, pad_y), (0, pad_x), (0, 0)), mode="edge")
    return out


def open_sink(
    path: Optional[Path | str],
    fmt: str,
    *,
    fps: float = 30.0,
    crf: int = 23,
    no_clobber: bool = False,
    single: bool = False,
) -> FrameSink:
    """
    Build a sink for an output path.

    Args:
        path: Output path; None or '-' means stdout (raw only)
        fmt: 'png' (image sequence, any OpenCV image suffix), 'raw' or 'mp4'
        fps: Video frame rate
        crf: Video quality
        no_clobber: Refuse to replace existing files
        single: Only one frame will be written (plain image path)
    """
    if fmt == "raw":
        return RawStreamSink("-" if path is None else path, no_clobber=no_clobber)
    if path is None or str(path) in STDOUT_ALIASES:
        raise SinkError(f"{fmt} output needs a file path")
    if fmt == "mp4":
        return VideoSink(path, fps=fps, crf=crf, no_clobber=no_clobber)
    return ImageSequenceSink(path, no_clobber=no_clobber, single=single)
