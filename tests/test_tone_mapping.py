import numpy as np
import pytest

from realistic_render.tone_mapping import (
    EXPOSURE_RANGE,
    TONE_MAPPING_OPTIONS,
    ToneMapping,
    apply_tone_mapping,
    label_for_tone_mapping,
    linear_to_srgb,
    srgb_to_linear,
    tone_mapping_from_label,
)


def test_option_labels_in_panel_order():
    assert list(TONE_MAPPING_OPTIONS) == ["No", "Linear", "Reinhard", "Cineon", "ACESFilmic"]
    assert [int(v) for v in TONE_MAPPING_OPTIONS.values()] == [0, 1, 2, 3, 4]


def test_exposure_range():
    assert EXPOSURE_RANGE == (0.1, 10.0)


def test_label_lookup():
    assert tone_mapping_from_label("ACESFilmic") is ToneMapping.ACES_FILMIC
    assert label_for_tone_mapping(ToneMapping.REINHARD) == "Reinhard"
    with pytest.raises(ValueError):
        tone_mapping_from_label("Filmic")


def test_none_passes_values_through():
    color = np.array([2.0, 0.5, 0.0])
    np.testing.assert_array_equal(apply_tone_mapping(color, ToneMapping.NONE, 5.0), color)


def test_linear_scales_and_clips():
    result = apply_tone_mapping(np.array([0.2, 0.5, 1.0]), ToneMapping.LINEAR, 1.5)
    np.testing.assert_allclose(result, [0.3, 0.75, 1.0])


def test_reinhard():
    result = apply_tone_mapping(np.array([1.0, 3.0, 0.0]), ToneMapping.REINHARD, 1.0)
    np.testing.assert_allclose(result, [0.5, 0.75, 0.0])


@pytest.mark.parametrize("mapping", [ToneMapping.REINHARD, ToneMapping.CINEON, ToneMapping.ACES_FILMIC])
def test_operators_are_monotonic_and_bounded(mapping):
    ramp = np.linspace(0.0, 20.0, 200)
    color = np.stack([ramp, ramp, ramp], axis=1)
    mapped = apply_tone_mapping(color, mapping, 1.5)[:, 1]
    assert np.all(np.diff(mapped) >= -1e-9)
    assert mapped.min() >= 0.0
    assert mapped.max() <= 1.0 + 1e-9


def test_exposure_brightens_aces():
    grey = np.array([0.18, 0.18, 0.18])
    low = apply_tone_mapping(grey, ToneMapping.ACES_FILMIC, 1.0)
    high = apply_tone_mapping(grey, ToneMapping.ACES_FILMIC, 1.5)
    assert np.all(high > low)


def test_srgb_round_trip():
    values = np.linspace(0.0, 1.0, 11)
    np.testing.assert_allclose(linear_to_srgb(srgb_to_linear(values)), values, atol=1e-9)
