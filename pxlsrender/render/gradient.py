"""
Color ramps used by the visualization styles.
"""

from typing import Sequence

import numpy as np


class Gradient:
    """Piecewise-linear color ramp over weighted stops.

    Values below the first stop take the first color, above the last stop
    the last color. Channels are floored to integers.
    """

    def __init__(self, colors: Sequence[Sequence[int]], weights: Sequence[float]):
        if len(colors) != len(weights):
            raise ValueError("colors and weights must have the same length")
        if not colors:
            raise ValueError("gradient needs at least one stop")
        if any(w < 0 for w in weights):
            raise ValueError("gradient weights must be non-negative")

        order = np.argsort(np.asarray(weights, dtype=np.float64), kind="stable")
        self.weights = np.asarray(weights, dtype=np.float64)[order]
        self.colors = np.asarray(colors, dtype=np.float64)[order]

    @property
    def domain(self) -> tuple[float, float]:
        return float(self.weights[0]), float(self.weights[-1])

    def at(self, values: np.ndarray) -> np.ndarray:
        """
        Evaluate the ramp.

        Args:
            values: Array of any shape

        Returns:
            uint8 array of shape values.shape + (4,)
        """
        values = np.asarray(values, dtype=np.float64)
        if np.isnan(values).any():
            raise ValueError("gradient weight must not be NaN")
        out = np.empty(values.shape + (4,), dtype=np.uint8)
        for channel in range(4):
            interp = np.interp(values, self.weights, self.colors[:, channel])
            out[..., channel] = np.floor(interp).astype(np.uint8)
        return out


def color_lerp(color: Sequence[int], values: np.ndarray) -> np.ndarray:
    """
    Ramp black -> color -> white.

    0.0 gives black, 0.5 the color itself and 1.0 white; alpha is opaque.

    Args:
        color: Base RGB(A) color
        values: Array of fractions in [0, 1]

    Returns:
        uint8 array of shape values.shape + (4,)
    """
    values = np.clip(np.asarray(values, dtype=np.float64), 0.0, 1.0)
    base = np.asarray(color[:3], dtype=np.float64)
    low = values[..., None] * 2.0
    high = (values[..., None] - 0.5) * 2.0
    rgb = np.where(
        values[..., None] < 0.5,
        base * low,
        base + (255.0 - base) * high,
    )
    out = np.empty(values.shape + (4,), dtype=np.uint8)
    out[..., :3] = np.floor(rgb).astype(np.uint8)
    out[..., 3] = 255
    return out
