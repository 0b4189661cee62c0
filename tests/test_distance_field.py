"""Tests for the scene distance field, blend rules and identifier codecs."""

import os
import sys

import numpy as np
import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from distance_field import (
    CHECKER_DARK,
    CHECKER_LIGHT,
    NO_HIT_MATERIAL,
    PLANE_TAG,
    DistanceField,
    SurfaceTag,
    checker_color,
    decode_material,
    decode_object_id,
    encode_material,
    encode_object_id,
    material_color,
    sd_box,
    sd_torus,
)
from scene import BOX, MAX_PER_TYPE, PRIMITIVE_TYPES, SPHERE, TORUS, SceneStore


def _field(*prims, policy="accumulator"):
    """Build a field from (kind, params) pairs added in order."""
    store = SceneStore()
    for kind, params in prims:
        store.add_primitive(kind, **params)
    return DistanceField(store.snapshot(), policy)


def _grid(n=9, lo=-1.5, hi=1.5):
    axis = np.linspace(lo, hi, n)
    return np.stack(np.meshgrid(axis, axis + 0.5, axis, indexing="ij"), axis=-1).reshape(-1, 3)


# --- Codecs ---

def test_object_id_round_trip_for_every_slot():
    seen = set()
    for kind in PRIMITIVE_TYPES:
        for slot in range(MAX_PER_TYPE):
            object_id = encode_object_id(kind, slot)
            assert decode_object_id(object_id) == (kind, slot)
            seen.add(object_id)
    assert seen == set(range(1, 31))


def test_object_id_bands():
    assert encode_object_id(SPHERE, 0) == 1
    assert encode_object_id(BOX, 0) == 11
    assert encode_object_id(TORUS, 9) == 30


def test_decode_background_and_out_of_band():
    assert decode_object_id(0) is None
    assert decode_object_id(31) is None
    assert decode_object_id(255) is None


def test_encode_rejects_invalid_input():
    with pytest.raises(ValueError):
        encode_object_id("cone", 0)
    with pytest.raises(ValueError):
        encode_object_id(SPHERE, MAX_PER_TYPE)
    with pytest.raises(ValueError):
        encode_object_id(BOX, -1)


def test_material_round_trip():
    assert decode_material(encode_material("plane")) == PLANE_TAG
    for kind in PRIMITIVE_TYPES:
        for slot in range(MAX_PER_TYPE):
            assert decode_material(encode_material(kind, slot)) == SurfaceTag(kind, slot)
    assert decode_material(NO_HIT_MATERIAL) is None


def test_material_survives_float32():
    tag = float(np.float32(encode_material(TORUS, 7)))
    assert decode_material(tag) == SurfaceTag(TORUS, 7)


def test_surface_tag_conversions():
    tag = SurfaceTag(BOX, 3)
    assert tag.object_id() == 14
    assert tag.material() == pytest.approx(2.03)
    assert PLANE_TAG.object_id() == 0
    assert PLANE_TAG.is_plane


# --- Primitive SDFs ---

def test_box_and_torus_distances():
    center = np.zeros(3)
    assert sd_box(np.array([2.0, 0.0, 0.0]), center, np.array([0.5, 0.5, 0.5])) == pytest.approx(1.5)
    assert sd_box(center, center, np.array([0.5, 1.0, 2.0])) == pytest.approx(-0.5)
    # Ring lies in XZ: the ring centerline is at distance -minor
    assert sd_torus(np.array([0.6, 0.0, 0.0]), center, (0.6, 0.2)) == pytest.approx(-0.2)
    assert sd_torus(np.array([0.0, 0.0, 0.0]), center, (0.6, 0.2)) == pytest.approx(0.4)


def test_empty_scene_is_ground_only():
    field = _field()
    d, tag = field.evaluate((0.3, 2.0, -4.0))
    assert d == pytest.approx(3.0)
    assert tag == PLANE_TAG


def test_evaluate_reports_nearest_primitive():
    field = _field((SPHERE, dict(position=(0, 0, 1), radius=0.5)))
    d, tag = field.evaluate((0.0, 2.0, 1.0))
    assert d == pytest.approx(1.5)
    assert tag == SurfaceTag(SPHERE, 0)


# --- Blend rules ---

def test_union_and_intersect_independent_of_storage_order():
    points = _grid()
    for mode in ("union", "inter"):
        first = [
            (SPHERE, dict(position=(-0.3, 0, 0), radius=0.6, blend=mode)),
            (SPHERE, dict(position=(0.3, 0, 0), radius=0.6, blend=mode)),
        ]
        swapped = [
            (SPHERE, dict(position=(0.3, 0, 0), radius=0.6, blend=mode)),
            (SPHERE, dict(position=(-0.3, 0, 0), radius=0.6, blend=mode)),
        ]
        assert np.allclose(_field(*first).distance(points), _field(*swapped).distance(points))


def test_smooth_union_is_order_dependent():
    points = _grid()
    first = _field(
        (SPHERE, dict(position=(-0.4, 0, 0), radius=0.5)),
        (SPHERE, dict(position=(0.4, 0, 0), radius=0.5, blend="sunion", blend_k=0.5)),
    )
    swapped = _field(
        (SPHERE, dict(position=(0.4, 0, 0), radius=0.5, blend="sunion", blend_k=0.5)),
        (SPHERE, dict(position=(-0.4, 0, 0), radius=0.5)),
    )
    assert not np.allclose(first.distance(points), swapped.distance(points))


def test_smooth_union_bulges_between_shapes():
    hard = _field(
        (SPHERE, dict(position=(-0.6, 0, 0), radius=0.5)),
        (SPHERE, dict(position=(0.6, 0, 0), radius=0.5)),
    )
    smooth = _field(
        (SPHERE, dict(position=(-0.6, 0, 0), radius=0.5)),
        (SPHERE, dict(position=(0.6, 0, 0), radius=0.5, blend="sunion", blend_k=0.4)),
    )
    p = np.array([0.0, 0.0, 0.0])
    assert smooth.distance(p) < hard.distance(p)


def test_subtract_is_not_commutative():
    a = dict(position=(0, 0, 0), radius=0.6)
    b = dict(position=(0.4, 0, 0), radius=0.6)
    ab = _field((SPHERE, a), (SPHERE, dict(b, blend="sub")))
    ba = _field((SPHERE, b), (SPHERE, dict(a, blend="sub")))
    p = np.array([-0.4, 0.0, 0.0])
    # Left of both centers: kept when carving b out of a, carved when carving a out of b
    assert ab.distance(p) < 0.0
    assert ba.distance(p) > 0.0


def test_subtract_keeps_accumulated_tag():
    field = _field(
        (SPHERE, dict(position=(0, 0, 0), radius=0.6)),
        (BOX, dict(position=(0.5, 0, 0), size=(0.3, 0.3, 0.3), blend="sub")),
    )
    _, tag = field.evaluate((0.5, 0.0, 0.0))
    assert tag == SurfaceTag(SPHERE, 0)


def test_intersect_takes_tag_of_larger():
    field = _field(
        (SPHERE, dict(position=(0, 0, 0), radius=0.6)),
        (BOX, dict(position=(0, 0, 0), size=(0.2, 0.2, 0.2), blend="inter")),
    )
    d, tag = field.evaluate((0.0, 0.0, 0.0))
    assert d == pytest.approx(-0.2)
    assert tag == SurfaceTag(BOX, 0)


def test_xor_takes_tag_of_smaller_magnitude():
    field = _field(
        (SPHERE, dict(position=(0, 0, 0), radius=1.0)),
        (SPHERE, dict(position=(0, 0, 0), radius=0.5, blend="xor")),
    )
    # Inside the small sphere: xor hollows it out
    d, tag = field.evaluate((0.0, 0.0, 0.0))
    assert d > 0.0
    assert tag == SurfaceTag(SPHERE, 1)


def test_smooth_union_color_is_continuous():
    red, blue = [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]
    field = _field(
        (SPHERE, dict(position=(-0.5, 0, 0), radius=0.45, color=red)),
        (SPHERE, dict(position=(0.5, 0, 0), radius=0.45, color=blue, blend="sunion", blend_k=0.5)),
    )
    xs = np.linspace(-0.5, 0.5, 2001)
    points = np.stack([xs, np.zeros_like(xs), np.zeros_like(xs)], axis=-1)
    colors = field.sample(points, with_color=True).color
    jumps = np.abs(np.diff(colors, axis=0)).max()
    assert jumps < 0.01
    assert np.allclose(colors[0], red)
    assert np.allclose(colors[-1], blue)


def test_hard_union_color_matches_tag():
    red, blue = [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]
    field = _field(
        (SPHERE, dict(position=(-0.5, 0, 0), radius=0.4, color=red)),
        (SPHERE, dict(position=(0.5, 0, 0), radius=0.4, color=blue)),
    )
    sample = field.sample(np.array([[-0.5, 0.0, 0.0], [0.5, 0.0, 0.0]]), with_color=True)
    assert list(sample.object_id) == [1, 2]
    assert np.allclose(sample.color, [red, blue])
    assert not sample.blended.any()


def test_propagate_policy_smooths_later_unions():
    prims = [
        (SPHERE, dict(position=(-0.6, 0, 0), radius=0.5)),
        (SPHERE, dict(position=(0.0, 0.8, 0), radius=0.3, blend="sunion", blend_k=0.4)),
        (SPHERE, dict(position=(0.6, 0, 0), radius=0.5)),
    ]
    accumulator = _field(*prims)
    propagate = _field(*prims, policy="propagate")
    p = np.array([0.3, 0.35, 0.0])
    assert propagate.distance(p) < accumulator.distance(p)
    # Far from the smooth primitive both policies agree
    far = np.array([0.6, -0.45, 0.0])
    assert propagate.distance(far) == pytest.approx(accumulator.distance(far))


def test_unknown_policy_is_rejected():
    with pytest.raises(ValueError):
        _field(policy="everything")


# --- Colors ---

def test_checker_parity():
    colors = checker_color(np.array([[0.5, -1.0, 0.5], [1.5, -1.0, 0.5], [-0.5, -1.0, 0.5]]))
    assert np.allclose(colors[0], CHECKER_LIGHT)
    assert np.allclose(colors[1], CHECKER_DARK)
    assert np.allclose(colors[2], CHECKER_DARK)


def test_material_color_lookup():
    store = SceneStore()
    store.add_sphere((0, 0, 0), 0.5, color=[0.1, 0.2, 0.3])
    store.add_box((2, 0, 0), (0.5, 0.5, 0.5), color=[0.9, 0.8, 0.7])
    snap = store.snapshot()
    assert np.allclose(material_color(snap, encode_material(SPHERE, 0), (0, 0, 0)), [0.1, 0.2, 0.3])
    assert np.allclose(material_color(snap, encode_material(BOX, 0), (0, 0, 0)), [0.9, 0.8, 0.7])
    assert np.allclose(material_color(snap, 0.0, (0.5, -1.0, 0.5)), CHECKER_LIGHT)
    assert material_color(snap, NO_HIT_MATERIAL, (0, 0, 0)) is None


def test_blend_strength_floor_keeps_field_finite():
    field = _field(
        (SPHERE, dict(position=(0, 0, 0), radius=0.5)),
        (SPHERE, dict(position=(0.5, 0, 0), radius=0.5, blend="sunion", blend_k=1e-12)),
    )
    d = field.distance(_grid())
    assert np.all(np.isfinite(d))
