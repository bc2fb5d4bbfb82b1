"""Tone mapping operators and sRGB transfer functions.

The operators follow the ones WebGL engines ship, so the CPU-rendered
background matches what the browser does to the meshes.
"""

from enum import IntEnum
from typing import Dict

import numpy as np


class ToneMapping(IntEnum):
    NONE = 0
    LINEAR = 1
    REINHARD = 2
    CINEON = 3
    ACES_FILMIC = 4


# Panel labels, in display order.
TONE_MAPPING_OPTIONS: Dict[str, ToneMapping] = {
    "No": ToneMapping.NONE,
    "Linear": ToneMapping.LINEAR,
    "Reinhard": ToneMapping.REINHARD,
    "Cineon": ToneMapping.CINEON,
    "ACESFilmic": ToneMapping.ACES_FILMIC,
}

EXPOSURE_RANGE = (0.1, 10.0)

# sRGB => AP1 and back, with the RRT_SAT matrix folded in
_ACES_INPUT = np.array([
    [0.59719, 0.35458, 0.04823],
    [0.07600, 0.90834, 0.01566],
    [0.02840, 0.13383, 0.83777],
])
_ACES_OUTPUT = np.array([
    [1.60475, -0.53108, -0.07367],
    [-0.10208, 1.10813, -0.00605],
    [-0.00327, -0.07276, 1.07602],
])


def tone_mapping_from_label(label: str) -> ToneMapping:
    try:
        return TONE_MAPPING_OPTIONS[label]
    except KeyError:
        raise ValueError(f"Unknown tone mapping {label!r}, expected one of {list(TONE_MAPPING_OPTIONS)}")


def label_for_tone_mapping(mapping: ToneMapping) -> str:
    for label, value in TONE_MAPPING_OPTIONS.items():
        if value == mapping:
            return label
    raise ValueError(f"Unknown tone mapping {mapping!r}")


def srgb_to_linear(values: np.ndarray) -> np.ndarray:
    values = np.asarray(values, dtype=np.float64)
    return np.where(values <= 0.04045, values / 12.92, ((values + 0.055) / 1.055) ** 2.4)


def linear_to_srgb(values: np.ndarray) -> np.ndarray:
    values = np.clip(np.asarray(values, dtype=np.float64), 0.0, None)
    return np.where(values <= 0.0031308, values * 12.92, 1.055 * np.power(values, 1 / 2.4) - 0.055)


def _rrt_and_odt_fit(v: np.ndarray) -> np.ndarray:
    a = v * (v + 0.0245786) - 0.000090537
    b = v * (0.983729 * v + 0.4329510) + 0.238081
    return a / b


def apply_tone_mapping(color: np.ndarray, mapping: ToneMapping, exposure: float = 1.0) -> np.ndarray:
    """Map linear HDR RGB values into [0, 1].

    Args:
        color: Linear RGB array of shape (..., 3)
        mapping: Operator to apply
        exposure: Scale applied before the operator (ignored for NONE)

    Returns:
        Linear RGB array of the same shape
    """
    color = np.asarray(color, dtype=np.float64)
    mapping = ToneMapping(mapping)

    if mapping == ToneMapping.NONE:
        return color

    if mapping == ToneMapping.LINEAR:
        return np.clip(exposure * color, 0.0, 1.0)

    if mapping == ToneMapping.REINHARD:
        color = exposure * color
        return np.clip(color / (1.0 + color), 0.0, 1.0)

    if mapping == ToneMapping.CINEON:
        color = np.maximum(exposure * color - 0.004, 0.0)
        mapped = (color * (6.2 * color + 0.5)) / (color * (6.2 * color + 1.7) + 0.06)
        return np.power(mapped, 2.2)

    # ACES filmic
    color = color * (exposure / 0.6)
    color = color @ _ACES_INPUT.T
    color = _rrt_and_odt_fit(color)
    color = color @ _ACES_OUTPUT.T
    return np.clip(color, 0.0, 1.0)
