"""
Palette loading and lookup.

A palette is an ordered table of RGBA colors indexed by the color index
found in log records. Supported files: pxls .json, GIMP .gpl, .csv,
paint.NET .txt and Photoshop .aco (version 1, RGB).
"""

import json
import struct
from pathlib import Path
from typing import Iterable, Optional, Sequence

import numpy as np

from pxlsrender.canvas.state import NO_COLOR
from pxlsrender.errors import ERROR, ConfigurationError


RGBA = tuple[int, int, int, int]

# Default pxls palette
DEFAULT_PALETTE: list[RGBA] = [
    (0, 0, 0, 255),        # Black
    (34, 34, 34, 255),     # Dark Grey
    (85, 85, 85, 255),     # Deep Grey
    (136, 136, 136, 255),  # Medium Grey
    (205, 205, 205, 255),  # Light Grey
    (255, 255, 255, 255),  # White
    (255, 213, 188, 255),  # Beige
    (255, 183, 131, 255),  # Peach
    (182, 109, 61, 255),   # Brown
    (119, 67, 31, 255),    # Chocolate
    (252, 117, 16, 255),   # Rust
    (252, 168, 14, 255),   # Orange
    (253, 232, 23, 255),   # Yellow
    (255, 244, 145, 255),  # Pastel Yellow
    (190, 255, 64, 255),   # Lime
    (112, 221, 19, 255),   # Green
    (49, 161, 23, 255),    # Dark Green
    (11, 95, 53, 255),     # Forest
    (39, 126, 108, 255),   # Dark Teal
    (50, 182, 159, 255),   # Light Teal
    (136, 255, 243, 255),  # Aqua
    (36, 181, 254, 255),   # Azure
    (18, 92, 199, 255),    # Blue
    (38, 41, 96, 255),     # Navy
    (139, 47, 168, 255),   # Purple
    (210, 76, 233, 255),   # Mauve
    (255, 89, 239, 255),   # Magenta
    (255, 169, 217, 255),  # Pink
    (255, 100, 116, 255),  # Watermelon
    (240, 37, 35, 255),    # Red
    (177, 18, 6, 255),     # Rose
    (116, 12, 0, 255),     # Maroon
]


class Palette:
    """Read-only color table."""

    def __init__(self, colors: Iterable[Sequence[int]]):
        table = np.array([tuple(c) for c in colors], dtype=np.int64)
        if table.size == 0:
            raise ConfigurationError("palette is empty", code=ERROR.PALETTE_INVALID)
        if table.ndim != 2 or table.shape[1] not in (3, 4):
            raise ConfigurationError("palette entries must be RGB or RGBA", code=ERROR.PALETTE_INVALID)
        if table.min() < 0 or table.max() > 255:
            raise ConfigurationError("palette channels must be within 0..255", code=ERROR.PALETTE_INVALID)
        if table.shape[1] == 3:
            table = np.concatenate([table, np.full((len(table), 1), 255)], axis=1)
        self.table = table.astype(np.uint8)
        self.table.setflags(write=False)

    def __len__(self) -> int:
        return len(self.table)

    def __getitem__(self, index: int) -> RGBA:
        r, g, b, a = (int(v) for v in self.table[index])
        return (r, g, b, a)

    def __repr__(self) -> str:
        return f"Palette({len(self)} colors)"

    def get(self, index: Optional[int]) -> Optional[RGBA]:
        if index is None or index < 0 or index >= len(self):
            return None
        return self[index]

    def match_indices(self, image: np.ndarray) -> np.ndarray:
        """
        Map an RGBA image onto palette indices.

        Args:
            image: (height, width, 4) uint8 RGBA array

        Returns:
            (height, width) int32 array; NO_COLOR where no palette color matches
            exactly or the pixel is fully transparent
        """
        rgb = image[..., :3].astype(np.uint32)
        packed = (rgb[..., 0] << 16) | (rgb[..., 1] << 8) | rgb[..., 2]
        pal = self.table[:, :3].astype(np.uint32)
        pal_packed = (pal[:, 0] << 16) | (pal[:, 1] << 8) | pal[:, 2]

        # First occurrence wins when a palette repeats a color
        unique_colors, first_idx = np.unique(pal_packed, return_index=True)
        pos = np.searchsorted(unique_colors, packed)
        pos = np.clip(pos, 0, len(unique_colors) - 1)
        found = unique_colors[pos] == packed
        if image.shape[-1] == 4:
            found &= image[..., 3] > 0

        out = np.full(packed.shape, NO_COLOR, dtype=np.int32)
        out[found] = first_idx[pos[found]]
        return out


def default_palette() -> Palette:
    return Palette(DEFAULT_PALETTE)


def _hex_to_rgb(value: str) -> tuple[int, int, int]:
    text = value.strip().lstrip("#")
    if len(text) != 6:
        raise ValueError(f"expected 6 hex digits, found {value!r}")
    return int(text[0:2], 16), int(text[2:4], 16), int(text[4:6], 16)


def parse_json_palette(text: str) -> list[RGBA]:
    data = json.loads(text)
    entries = data["palette"] if isinstance(data, dict) else data
    colors = []
    for entry in entries:
        value = entry["value"] if isinstance(entry, dict) else entry
        colors.append((*_hex_to_rgb(value), 255))
    return colors


def parse_csv_palette(text: str) -> list[RGBA]:
    # Header: Name,#hexadecimal,R,G,B
    colors = []
    for line in text.splitlines()[1:]:
        if not line.strip():
            continue
        fields = line.split(",")
        r, g, b = (int(v) for v in fields[2:5])
        colors.append((r, g, b, 255))
    return colors


def parse_txt_palette(text: str) -> list[RGBA]:
    # paint.NET: AARRGGBB per line, ';' starts a comment
    colors = []
    for line in text.splitlines():
        token = line.split(";", 1)[0].strip()
        if not token:
            continue
        token = token.split()[0]
        if len(token) != 8:
            raise ValueError(f"expected AARRGGBB, found {token!r}")
        a, r, g, b = (int(token[i:i + 2], 16) for i in range(0, 8, 2))
        colors.append((r, g, b, a))
    return colors


def parse_gpl_palette(text: str) -> list[RGBA]:
    lines = text.splitlines()
    if not lines or lines[0].strip() != "GIMP Palette":
        raise ValueError("invalid magic header")
    colors = []
    for line in lines[1:]:
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or ":" in stripped.split()[0]:
            # Comments and "Name:"/"Columns:" headers
            continue
        values = stripped.split()
        r, g, b = (int(v) for v in values[:3])
        colors.append((r, g, b, 255))
    return colors


def parse_aco_palette(data: bytes) -> list[RGBA]:
    if len(data) < 4:
        raise ValueError("unexpected end of file")
    version, count = struct.unpack_from(">HH", data, 0)
    if version != 1:
        raise ValueError(f"unsupported ACO version {version}")
    colors = []
    offset = 4
    for _ in range(count):
        if offset + 10 > len(data):
            raise ValueError("unexpected end of file")
        space, w, x, y, _z = struct.unpack_from(">HHHHH", data, offset)
        offset += 10
        if space != 0:
            raise ValueError(f"unsupported color space {space}")
        colors.append((w // 257, x // 257, y // 257, 255))
    return colors


_TEXT_PARSERS = {
    ".json": parse_json_palette,
    ".csv": parse_csv_palette,
    ".txt": parse_txt_palette,
    ".gpl": parse_gpl_palette,
}


def load_palette(path: Optional[Path | str]) -> Palette:
    """
    Load a palette file, or the default palette when no path is given.

    Raises:
        ConfigurationError: missing file, unsupported type or bad contents
    """
    if path is None:
        return default_palette()
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"palette not found: {path}", code=ERROR.PALETTE_INVALID)

    suffix = path.suffix.lower()
    try:
        if suffix == ".aco":
            colors = parse_aco_palette(path.read_bytes())
        elif suffix in _TEXT_PARSERS:
            colors = _TEXT_PARSERS[suffix](path.read_text(encoding="utf8"))
        else:
            raise ConfigurationError(f"unsupported palette type: {path}", code=ERROR.PALETTE_INVALID)
    except (ValueError, KeyError, TypeError, IndexError) as e:
        raise ConfigurationError(f"failed to parse palette {path}: {e}", code=ERROR.PALETTE_INVALID) from e
    return Palette(colors)
