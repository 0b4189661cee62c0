"""Signed distance field of the scene.

All SDF helpers accept point arrays of shape ``(..., 3)`` and return arrays of
shape ``(...,)``, so the same code evaluates one point or a whole frame of
rays. Primitive identity travels through the field as integer ObjectIDs
(0 = ground plane); :class:`SurfaceTag` is the scalar-friendly view of the
same value.
"""

import math
from collections import namedtuple

import numpy as np

from scene import BOX, GROUND_HEIGHT, MAX_PER_TYPE, PRIMITIVE_TYPES, SPHERE, TORUS

# --- Field constants ---
MIN_BLEND_K = 1e-4  # Floor for the smooth-min radius, keeps the division finite
SMOOTH_POLICIES = ("accumulator", "propagate")
EMPTY_DISTANCE = 1e9  # Field value with nothing in it (ground excluded)

# Ground checkerboard
CHECKER_LIGHT = (0.75, 0.75, 0.75)
CHECKER_DARK = (0.35, 0.35, 0.35)


# --- Object identifiers ---
PLANE_ID = 0
NUM_OBJECT_IDS = 1 + len(PRIMITIVE_TYPES) * MAX_PER_TYPE
_ID_BASE = {kind: band * MAX_PER_TYPE for band, kind in enumerate(PRIMITIVE_TYPES)}


def encode_object_id(kind, slot):
    """(kind, slot) -> ObjectID. Spheres 1..10, boxes 11..20, tori 21..30."""
    if kind not in _ID_BASE:
        raise ValueError(f"Unknown primitive type: {kind}")
    if not 0 <= slot < MAX_PER_TYPE:
        raise ValueError(f"Slot {slot} outside 0..{MAX_PER_TYPE - 1}")
    return _ID_BASE[kind] + slot + 1


def decode_object_id(object_id):
    """ObjectID -> (kind, slot), or None for the ground / background / unknown values."""
    object_id = int(object_id)
    if not 1 <= object_id < NUM_OBJECT_IDS:
        return None
    band, slot = divmod(object_id - 1, MAX_PER_TYPE)
    return PRIMITIVE_TYPES[band], slot


class SurfaceTag(namedtuple("SurfaceTag", ["kind", "slot"])):
    """What a field sample or a ray hit landed on: the ground plane or a primitive slot."""
    __slots__ = ()

    @property
    def is_plane(self):
        return self.kind == "plane"

    def object_id(self):
        return PLANE_ID if self.is_plane else encode_object_id(self.kind, self.slot)

    def material(self):
        return encode_material(self.kind, self.slot)


PLANE_TAG = SurfaceTag("plane", -1)


def tag_from_id(object_id):
    obj = decode_object_id(object_id)
    return PLANE_TAG if obj is None else SurfaceTag(*obj)


# --- MaterialTag (scalar encoding used by the GPU shading pass) ---
# band + slot * step; bands 1/2/3 for sphere/box/torus, 0 for the plane
MATERIAL_BANDS = {"plane": 0.0, SPHERE: 1.0, BOX: 2.0, TORUS: 3.0}
MATERIAL_SLOT_STEP = 0.01
NO_HIT_MATERIAL = -1.0
_BAND_KINDS = {int(band): kind for kind, band in MATERIAL_BANDS.items()}


def encode_material(kind, slot=0):
    if kind == "plane":
        return MATERIAL_BANDS["plane"]
    if kind not in MATERIAL_BANDS:
        raise ValueError(f"Unknown primitive type: {kind}")
    if not 0 <= slot < MAX_PER_TYPE:
        raise ValueError(f"Slot {slot} outside 0..{MAX_PER_TYPE - 1}")
    return MATERIAL_BANDS[kind] + slot * MATERIAL_SLOT_STEP


def decode_material(value):
    """MaterialTag -> SurfaceTag, or None for the no-hit sentinel and values outside every band."""
    if value < -0.5 * MATERIAL_SLOT_STEP:
        return None
    band = math.floor(value + 0.5 * MATERIAL_SLOT_STEP)
    kind = _BAND_KINDS.get(band)
    if kind is None:
        return None
    if kind == "plane":
        return PLANE_TAG
    slot = int(round((value - band) / MATERIAL_SLOT_STEP))
    if not 0 <= slot < MAX_PER_TYPE:
        return None
    return SurfaceTag(kind, slot)


# --- Primitive SDFs ---

def length(v):
    return np.linalg.norm(v, axis=-1)


def sd_ground(p):
    return p[..., 1] - GROUND_HEIGHT


def sd_sphere(p, center, radius):
    return length(p - center) - radius


def sd_box(p, center, half_extents):
    q = np.abs(p - center) - half_extents
    return length(np.maximum(q, 0.0)) + np.minimum(np.max(q, axis=-1), 0.0)


def sd_torus(p, center, radii):
    """Torus whose ring lies in the XZ plane; radii = (major, minor)."""
    local = p - center
    ring = np.stack([length(local[..., [0, 2]]) - radii[0], local[..., 1]], axis=-1)
    return length(ring) - radii[1]


def checker_color(p):
    """Procedural ground color: alternating grays on the unit grid of x/z."""
    p = np.asarray(p, dtype=np.float64)
    parity = np.mod(np.floor(p[..., 0]) + np.floor(p[..., 2]), 2.0)
    return np.where(parity[..., None] < 0.5, np.asarray(CHECKER_LIGHT), np.asarray(CHECKER_DARK))


# --- CSG operators ---

def op_union(a, b):
    return np.minimum(a, b)


def op_smooth_union(a, b, k):
    """Polynomial smooth-min. Returns (distance, h) where h is the weight of b."""
    k = np.maximum(k, MIN_BLEND_K)
    h = np.clip(0.5 + 0.5 * (a - b) / k, 0.0, 1.0)
    return a * (1.0 - h) + b * h - k * h * (1.0 - h), h


def op_subtract(a, b):
    """Carve b out of a."""
    return np.maximum(-b, a)


def op_intersect(a, b):
    return np.maximum(a, b)


def op_xor(a, b):
    return np.maximum(np.minimum(a, b), -np.maximum(a, b))


def _primitive_sdf(kind, prim):
    center = np.asarray(prim.position, dtype=np.float64)
    if kind == SPHERE:
        return lambda p: sd_sphere(p, center, prim.radius)
    if kind == BOX:
        half_extents = np.asarray(prim.size, dtype=np.float64)
        return lambda p: sd_box(p, center, half_extents)
    radii = tuple(prim.radii)
    return lambda p: sd_torus(p, center, radii)


_FieldTerm = namedtuple("_FieldTerm", ["object_id", "sdf", "blend", "k", "color"])

FieldSample = namedtuple("FieldSample", ["distance", "object_id", "color", "blended"])


class DistanceField:
    """Combined SDF of the ground plane and every active primitive of a snapshot.

    Primitives are folded into the running result in storage order (spheres,
    boxes, tori, each by slot), so every blend mode other than plain union and
    intersect depends on that order.

    ``smooth_policy`` decides how far a smooth union reaches:

    * ``"accumulator"``: a smooth-union primitive blends with the accumulated
      field at the moment it is visited and with nothing that comes later.
    * ``"propagate"``: in addition, a later union-mode primitive is blended
      smoothly (instead of by a hard min) wherever an earlier smooth-union
      primitive is within that primitive's blend radius of it, using the
      largest such radius.
    """

    def __init__(self, snapshot, smooth_policy="accumulator", include_ground=True):
        if smooth_policy not in SMOOTH_POLICIES:
            raise ValueError(f"Unknown smooth policy {smooth_policy!r}, expected one of {SMOOTH_POLICIES}")
        self.snapshot = snapshot
        self.smooth_policy = smooth_policy
        self.include_ground = include_ground
        self._terms = [
            _FieldTerm(
                object_id=encode_object_id(kind, slot),
                sdf=_primitive_sdf(kind, prim),
                blend=prim.blend,
                k=max(prim.blend_k, MIN_BLEND_K),
                color=np.asarray(prim.color, dtype=np.float64),
            )
            for kind, slot, prim in snapshot.items()
        ]

    def sample(self, points, with_color=False):
        """Evaluate the field at `points` (shape (..., 3))."""
        p = np.asarray(points, dtype=np.float64)
        d = sd_ground(p) if self.include_ground else np.full(p.shape[:-1], EMPTY_DISTANCE)
        ids = np.zeros(d.shape, dtype=np.int32)
        color = checker_color(p) if with_color else None
        blended = np.zeros(d.shape, dtype=bool) if with_color else None
        propagate = self.smooth_policy == "propagate"
        smooth_terms = []

        for term in self._terms:
            dc = term.sdf(p)
            k = None
            if term.blend == "sunion":
                k = term.k
                if propagate:
                    smooth_terms.append((dc, term.k))
            elif term.blend == "union" and smooth_terms:
                # Largest blend radius of an earlier smooth primitive that reaches this one here
                reach = np.zeros(d.shape)
                for ds, ks in smooth_terms:
                    reach = np.where(np.abs(ds - dc) < ks, np.maximum(reach, ks), reach)
                if np.any(reach > 0.0):
                    k = np.where(reach > 0.0, reach, MIN_BLEND_K)
                    hard = reach <= 0.0

            if k is not None:
                closer = dc < d
                new_d, h = op_smooth_union(d, dc, k)
                if term.blend == "union":
                    # Points outside every propagated radius still take the plain min
                    new_d = np.where(hard, op_union(d, dc), new_d)
                    h = np.where(hard, closer.astype(np.float64), h)
                ids = np.where(closer, term.object_id, ids)
                if with_color:
                    color = color * (1.0 - h)[..., None] + term.color * h[..., None]
                    blended = np.where((h > 0.0) & (h < 1.0), True, blended & (h <= 0.0))
                d = new_d
                continue

            if term.blend == "sub":
                d = op_subtract(d, dc)
                continue
            if term.blend == "union":
                take, d = dc < d, op_union(d, dc)
            elif term.blend == "inter":
                take, d = dc > d, op_intersect(d, dc)
            else:
                take, d = np.abs(dc) < np.abs(d), op_xor(d, dc)
            ids = np.where(take, term.object_id, ids)
            if with_color:
                color = np.where(take[..., None], term.color, color)
                blended = blended & ~take

        return FieldSample(d, ids, color, blended)

    def distance(self, points):
        return self.sample(points).distance

    def evaluate(self, point):
        """Single point -> (distance, SurfaceTag)."""
        sample = self.sample(np.asarray(point, dtype=np.float64).reshape(3))
        return float(sample.distance), tag_from_id(int(sample.object_id))


def material_color(snapshot, material, point):
    """Color of the surface a MaterialTag names, or None for the no-hit sentinel."""
    tag = decode_material(material)
    if tag is None:
        return None
    if tag.is_plane:
        return checker_color(point)
    return np.asarray(snapshot.get(tag.kind, tag.slot).color, dtype=np.float64)
