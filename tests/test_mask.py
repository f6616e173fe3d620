"""Mask synthesis: polarity, hard vs smoothed edges, size checks."""

from __future__ import annotations

import numpy as np
import pytest

from selfie_remover.errors import DimensionMismatch
from selfie_remover.mask import (
    OPAQUE_WHITE,
    TRANSPARENT_BLACK,
    ColorPair,
    Rgba,
    box_weights,
    synthesize,
)
from selfie_remover.segmentation import SegmentationResult

from conftest import left_half_labels


def _colors_present(mask: np.ndarray) -> set:
    return {tuple(int(c) for c in px) for px in mask.reshape(-1, 4)}


def test_all_foreground_gives_uniform_foreground(settings) -> None:
    seg = SegmentationResult.from_labels(np.ones((3, 4), dtype=bool))

    mask = synthesize(seg, 4, 3, smooth_edges=True, settings=settings)

    assert _colors_present(mask.pixels) == {tuple(OPAQUE_WHITE)}


def test_all_background_gives_uniform_background(settings) -> None:
    seg = SegmentationResult.from_labels(np.zeros((3, 4), dtype=bool))

    mask = synthesize(seg, 4, 3, smooth_edges=True, settings=settings)

    assert _colors_present(mask.pixels) == {tuple(TRANSPARENT_BLACK)}


def test_two_pixel_hard_mask(settings) -> None:
    seg = SegmentationResult.from_labels(np.array([[True, False]]))

    mask = synthesize(seg, 2, 1, smooth_edges=False, settings=settings)

    assert mask.size == (2, 1)
    assert mask.pixels[0, 0].tolist() == [255, 255, 255, 255]
    assert mask.pixels[0, 1].tolist() == [0, 0, 0, 0]


def test_hard_mask_has_only_two_colors(settings) -> None:
    rng = np.random.default_rng(3)
    seg = SegmentationResult.from_confidence(rng.random((16, 16)))

    mask = synthesize(seg, 16, 16, smooth_edges=False, settings=settings)

    assert _colors_present(mask.pixels) <= {tuple(OPAQUE_WHITE), tuple(TRANSPARENT_BLACK)}
    assert set(np.unique(mask.alpha).tolist()) <= {0, 255}


def test_box_smoothing_blends_only_near_boundary(settings) -> None:
    seg = SegmentationResult.from_labels(left_half_labels(10, 4))

    mask = synthesize(seg, 10, 4, smooth_edges=True, strategy="box", settings=settings)

    alpha = mask.alpha
    partial = (alpha > 0) & (alpha < 255)
    assert partial.any()
    # radius 1: only columns 4 and 5 touch the boundary
    assert set(np.nonzero(partial)[1].tolist()) == {4, 5}
    assert (alpha[:, :4] == 255).all()
    assert (alpha[:, 6:] == 0).all()


def test_auto_smoothing_uses_box_for_hard_labels(settings) -> None:
    seg = SegmentationResult.from_labels(left_half_labels(8, 8))

    auto = synthesize(seg, 8, 8, smooth_edges=True, strategy="auto", settings=settings)
    box = synthesize(seg, 8, 8, smooth_edges=True, strategy="box", settings=settings)

    assert np.array_equal(auto.pixels, box.pixels)


def test_confidence_smoothing_is_proportional_inside_band(settings) -> None:
    conf = np.array([[1.0, 0.75, 0.25, 0.0]], dtype=np.float32)
    seg = SegmentationResult.from_confidence(conf)

    mask = synthesize(seg, 4, 1, smooth_edges=True, strategy="confidence", settings=settings)

    assert mask.alpha.tolist() == [[255, 191, 64, 0]]


def test_confidence_outside_band_snaps_to_labels(settings) -> None:
    conf = np.array([[0.97, 0.02]], dtype=np.float32)
    seg = SegmentationResult.from_confidence(conf)

    mask = synthesize(seg, 2, 1, smooth_edges=True, strategy="confidence", settings=settings)

    assert mask.alpha.tolist() == [[255, 0]]


def test_inversion_is_an_involution(settings) -> None:
    seg = SegmentationResult.from_labels(left_half_labels(6, 3))
    pair = ColorPair.default()

    once = pair.inverted()
    twice = once.inverted()
    original = synthesize(seg, 6, 3, pair.foreground, pair.background, smooth_edges=False, settings=settings)
    inverted = synthesize(seg, 6, 3, once.foreground, once.background, smooth_edges=False, settings=settings)
    restored = synthesize(seg, 6, 3, twice.foreground, twice.background, smooth_edges=False, settings=settings)

    assert twice == pair
    assert np.array_equal(restored.pixels, original.pixels)
    assert np.array_equal(inverted.alpha, 255 - original.alpha)


def test_box_weights_stay_in_unit_interval(settings) -> None:
    seg = SegmentationResult.from_labels(np.eye(5, dtype=bool))

    weights = box_weights(seg, settings)

    assert weights.min() >= 0.0
    assert weights.max() <= 1.0


@pytest.mark.parametrize("size", [(3, 2), (2, 3), (1, 1)])
def test_dimension_mismatch_is_rejected(settings, size) -> None:
    seg = SegmentationResult.from_labels(np.ones((2, 2), dtype=bool))

    with pytest.raises(DimensionMismatch):
        synthesize(seg, size[0], size[1], smooth_edges=True, settings=settings)


def test_out_of_range_color_is_rejected() -> None:
    with pytest.raises(ValueError):
        ColorPair(foreground=Rgba(256, 0, 0, 255))


def test_unknown_strategy_is_rejected(settings) -> None:
    seg = SegmentationResult.from_labels(np.ones((2, 2), dtype=bool))

    with pytest.raises(ValueError):
        synthesize(seg, 2, 2, smooth_edges=True, strategy="gaussian", settings=settings)


def test_auto_feathers_saturated_graded_edges(settings) -> None:
    conf = np.zeros((4, 10), dtype=np.float32)
    conf[:, :5] = 1.0
    seg = SegmentationResult.from_confidence(conf)

    mask = synthesize(seg, 10, 4, smooth_edges=True, settings=settings)

    partial = (mask.alpha > 0) & (mask.alpha < 255)
    assert set(np.nonzero(partial)[1].tolist()) == {4, 5}


def test_auto_prefers_confidence_where_the_edge_is_uncertain(settings) -> None:
    conf = np.array([[1.0, 1.0, 0.6, 0.3, 0.0, 0.0]], dtype=np.float32)
    seg = SegmentationResult.from_confidence(conf)

    auto = synthesize(seg, 6, 1, smooth_edges=True, strategy="auto", settings=settings)
    confidence = synthesize(seg, 6, 1, smooth_edges=True, strategy="confidence", settings=settings)

    assert np.array_equal(auto.pixels, confidence.pixels)
