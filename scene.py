import json
import logging
from collections import namedtuple

import numpy as np

log = logging.getLogger(__name__)


# --- Scene limits ---
MAX_PER_TYPE = 10  # Fixed array size of every primitive type in the GPU scene block
GROUND_HEIGHT = -1.0  # The ground plane is y = GROUND_HEIGHT, always present, never selectable

SPHERE = "sphere"
BOX = "box"
TORUS = "torus"
PRIMITIVE_TYPES = (SPHERE, BOX, TORUS)

# Blend modes, in the order the GPU code numbers them
BLEND_MODES = ("union", "sunion", "sub", "inter", "xor")
BLEND_MODE_CODES = {name: code for code, name in enumerate(BLEND_MODES)}
BLEND_MODE_LABELS = {
    "union": "Normal",
    "sunion": "Smooth Union",
    "sub": "Subtract",
    "inter": "Intersect",
    "xor": "XOR",
}
DEFAULT_BLEND_K = 0.3
DEFAULT_COLOR = [0.8, 0.6, 0.4]


class SceneError(ValueError):
    """Invalid edit rejected at the scene boundary."""


class SceneCapacityError(SceneError):
    """A primitive type is already at MAX_PER_TYPE."""


# What an edit did, passed to observers: action is one of
# "add", "remove", "edit", "clear", "load"; kind / slot are None for whole-scene changes
SceneChange = namedtuple("SceneChange", ["action", "kind", "slot"])


# --- Primitives ---

class SDFPrimitive:
    primitive_type = None
    # Shape fields: name -> number of components (1 = scalar)
    shape_fields = {}

    def __init__(self, position=(0.0, 0.0, 0.0), color=None, blend="union", blend_k=DEFAULT_BLEND_K, ui_name=None):
        self.position = [float(v) for v in position]
        self.color = [float(v) for v in color] if color else list(DEFAULT_COLOR)
        self.blend = blend
        self.blend_k = float(blend_k)
        self.ui_name = ui_name or self.primitive_type.capitalize()

    def shape_params(self):
        return {name: getattr(self, name) for name in self.shape_fields}

    def copy(self):
        return self.__class__.from_dict(self.to_dict())

    def to_dict(self):
        """Convert primitive to a dictionary for JSON serialization."""
        data = {
            "primitive_type": self.primitive_type,
            "position": list(self.position),
            "color": list(self.color),
            "blend": self.blend,
            "blend_k": self.blend_k,
            "ui_name": self.ui_name,
        }
        for name, value in self.shape_params().items():
            data[name] = list(value) if isinstance(value, list) else value
        return data

    @classmethod
    def from_dict(cls, data):
        kwargs = {key: data[key] for key in ("position", "color", "blend", "blend_k", "ui_name") if key in data}
        kwargs.update({name: data[name] for name in cls.shape_fields if name in data})
        return cls(**kwargs)

    def __repr__(self):
        return f"{self.__class__.__name__}({self.ui_name!r}, position={self.position})"


class Sphere(SDFPrimitive):
    primitive_type = SPHERE
    shape_fields = {"radius": 1}

    def __init__(self, position=(0.0, 0.0, 0.0), radius=0.5, **kwargs):
        super().__init__(position, **kwargs)
        self.radius = float(radius)


class Box(SDFPrimitive):
    primitive_type = BOX
    shape_fields = {"size": 3}

    def __init__(self, position=(0.0, 0.0, 0.0), size=(0.5, 0.5, 0.5), **kwargs):
        super().__init__(position, **kwargs)
        # Half-extents
        self.size = [float(v) for v in size]


class Torus(SDFPrimitive):
    primitive_type = TORUS
    shape_fields = {"radii": 2}

    def __init__(self, position=(0.0, 0.0, 0.0), radii=(0.6, 0.2), **kwargs):
        super().__init__(position, **kwargs)
        # (major, minor), ring in the XZ plane
        self.radii = [float(v) for v in radii]


PRIMITIVE_CLASSES = {SPHERE: Sphere, BOX: Box, TORUS: Torus}


_LIST_NAMES = {SPHERE: "spheres", BOX: "boxes", TORUS: "tori"}


class SceneSnapshot(namedtuple("SceneSnapshot", ["spheres", "boxes", "tori", "version"])):
    """Frozen per-frame copy of the scene. Passes read a snapshot, edits go to the store."""
    __slots__ = ()

    def items(self):
        for kind in PRIMITIVE_TYPES:
            for slot, prim in enumerate(getattr(self, _LIST_NAMES[kind])):
                yield kind, slot, prim

    def get(self, kind, slot):
        return getattr(self, _LIST_NAMES[kind])[slot]

    def counts(self):
        return len(self.spheres), len(self.boxes), len(self.tori)


# --- GPU layout (std140 uniform block) ---
# Header of 4 uint32 counters, then 10 records per type. Vectors start on
# 16-byte boundaries, records are multiples of 16 bytes.
HEADER_DTYPE = np.dtype([("counts", "<u4", (4,))])

SPHERE_DTYPE = np.dtype({
    "names": ["center", "radius", "color", "blend_mode", "blend_k"],
    "formats": [("<f4", (3,)), "<f4", ("<f4", (3,)), "<u4", "<f4"],
    "offsets": [0, 12, 16, 32, 36],
    "itemsize": 48,
})

BOX_DTYPE = np.dtype({
    "names": ["center", "size", "color", "blend_mode", "blend_k"],
    "formats": [("<f4", (3,)), ("<f4", (3,)), ("<f4", (3,)), "<u4", "<f4"],
    "offsets": [0, 16, 32, 48, 52],
    "itemsize": 64,
})

TORUS_DTYPE = np.dtype({
    "names": ["center", "radii", "color", "blend_mode", "blend_k"],
    "formats": [("<f4", (3,)), ("<f4", (2,)), ("<f4", (3,)), "<u4", "<f4"],
    "offsets": [0, 16, 32, 48, 52],
    "itemsize": 64,
})

SCENE_DTYPE = np.dtype([
    ("header", HEADER_DTYPE),
    ("spheres", SPHERE_DTYPE, (MAX_PER_TYPE,)),
    ("boxes", BOX_DTYPE, (MAX_PER_TYPE,)),
    ("tori", TORUS_DTYPE, (MAX_PER_TYPE,)),
])

_RECORD_DTYPES = {SPHERE: SPHERE_DTYPE, BOX: BOX_DTYPE, TORUS: TORUS_DTYPE}
_SHAPE_GPU_FIELD = {SPHERE: ("radius", "radius"), BOX: ("size", "size"), TORUS: ("radii", "radii")}


class SceneStore:
    """Owns the primitives of the scene. Every edit goes through here."""

    def __init__(self, capacity=MAX_PER_TYPE):
        if capacity > MAX_PER_TYPE:
            raise SceneError(f"Capacity {capacity} exceeds the GPU limit of {MAX_PER_TYPE}")
        self.capacity = capacity
        self.spheres = []
        self.boxes = []
        self.tori = []
        self.version = 0
        self._observers = []

    # --- Observers ---

    def subscribe(self, callback):
        if callback not in self._observers:
            self._observers.append(callback)

    def unsubscribe(self, callback):
        if callback in self._observers:
            self._observers.remove(callback)

    def _changed(self, action, kind=None, slot=None):
        self.version += 1
        change = SceneChange(action, kind, slot)
        for callback in list(self._observers):
            callback(self, change)

    # --- Lookup ---

    def _list(self, kind):
        if kind not in _LIST_NAMES:
            raise SceneError(f"Unknown primitive type: {kind}")
        return getattr(self, _LIST_NAMES[kind])

    def _check_slot(self, kind, slot):
        prims = self._list(kind)
        if not isinstance(slot, (int, np.integer)) or not 0 <= slot < len(prims):
            raise SceneError(f"No {kind} in slot {slot} (count {len(prims)})")
        return prims

    def get(self, kind, slot):
        return self._check_slot(kind, slot)[slot]

    def count(self, kind):
        return len(self._list(kind))

    def counts(self):
        return tuple(len(self._list(kind)) for kind in PRIMITIVE_TYPES)

    def items(self):
        """All primitives in storage order: spheres, boxes, tori."""
        for kind in PRIMITIVE_TYPES:
            for slot, prim in enumerate(self._list(kind)):
                yield kind, slot, prim

    def exists(self, obj):
        if obj is None:
            return False
        kind, slot = obj
        return kind in _LIST_NAMES and 0 <= slot < len(self._list(kind))

    def __len__(self):
        return sum(self.counts())

    # --- Edits ---

    def add_primitive(self, kind, **params):
        """Append a primitive of `kind` and return its slot."""
        prims = self._list(kind)
        if len(prims) >= self.capacity:
            raise SceneCapacityError(f"Cannot add {kind}: all {self.capacity} slots are in use")
        try:
            primitive = PRIMITIVE_CLASSES[kind](**params)
        except (TypeError, ValueError) as e:
            raise SceneError(f"Invalid {kind} parameters {params}: {e}")
        if "ui_name" not in params:
            primitive.ui_name = f"{kind.capitalize()} {len(prims) + 1}"
        self._validate(primitive)
        prims.append(primitive)
        self._changed("add", kind, len(prims) - 1)
        return len(prims) - 1

    def add_sphere(self, position, radius, **kwargs):
        return self.add_primitive(SPHERE, position=position, radius=radius, **kwargs)

    def add_box(self, position, size, **kwargs):
        return self.add_primitive(BOX, position=position, size=size, **kwargs)

    def add_torus(self, position, major_radius, minor_radius, **kwargs):
        return self.add_primitive(TORUS, position=position, radii=(major_radius, minor_radius), **kwargs)

    def remove_primitive(self, kind, slot):
        """Remove a primitive. Later slots shift down so active slots stay a prefix."""
        prims = self._check_slot(kind, slot)
        del prims[slot]
        self._changed("remove", kind, slot)

    def set_param(self, kind, slot, field, value):
        primitive = self.get(kind, slot)
        candidate = primitive.copy()
        if field in ("position", "color"):
            setattr(candidate, field, self._vector(field, value, 3))
        elif field in candidate.shape_fields:
            size = candidate.shape_fields[field]
            setattr(candidate, field, self._number(field, value) if size == 1 else self._vector(field, value, size))
        elif field == "blend":
            candidate.blend = value
        elif field == "blend_k":
            candidate.blend_k = self._number(field, value)
        elif field == "ui_name":
            candidate.ui_name = str(value)
        else:
            raise SceneError(f"{kind} has no field {field!r}")
        self._validate(candidate)
        setattr(primitive, field, getattr(candidate, field))
        self._changed("edit", kind, slot)

    def get_position(self, obj):
        kind, slot = obj
        return list(self.get(kind, slot).position)

    def set_position(self, obj, pos):
        kind, slot = obj
        self.set_param(kind, slot, "position", pos)

    def clear(self):
        self.spheres.clear()
        self.boxes.clear()
        self.tori.clear()
        self._changed("clear")

    @staticmethod
    def _number(field, value):
        try:
            return float(value)
        except (TypeError, ValueError):
            raise SceneError(f"{field} must be a number, got {value!r}")

    @staticmethod
    def _vector(field, value, size):
        try:
            vec = [float(v) for v in value]
        except (TypeError, ValueError):
            raise SceneError(f"{field} must be a sequence of {size} numbers")
        if len(vec) != size:
            raise SceneError(f"{field} must have {size} components, got {len(vec)}")
        return vec

    def _validate(self, primitive):
        if not isinstance(primitive.blend, str) or primitive.blend not in BLEND_MODE_CODES:
            raise SceneError(f"Unknown blend mode: {primitive.blend}")
        if not primitive.blend_k > 0.0:
            raise SceneError(f"Blend strength must be positive, got {primitive.blend_k}")
        if len(primitive.position) != 3 or len(primitive.color) != 3:
            raise SceneError("position and color must have 3 components")
        for name, size in primitive.shape_fields.items():
            value = getattr(primitive, name)
            values = [value] if size == 1 else value
            if len(values) != size:
                raise SceneError(f"{name} must have {size} components")
            if any(not v > 0.0 for v in values):
                raise SceneError(f"{name} must be positive, got {value}")

    # --- Snapshot and GPU packing ---

    def snapshot(self):
        return SceneSnapshot(
            spheres=tuple(p.copy() for p in self.spheres),
            boxes=tuple(p.copy() for p in self.boxes),
            tori=tuple(p.copy() for p in self.tori),
            version=self.version,
        )

    def pack(self):
        """Serialize into the std140 scene block. Returns a uint8 array."""
        block = np.zeros(1, dtype=SCENE_DTYPE)
        block["header"]["counts"][0, :3] = self.counts()
        for kind, slot, prim in self.items():
            records = block[_LIST_NAMES[kind]][0]
            records["center"][slot] = prim.position
            records["color"][slot] = prim.color
            records["blend_mode"][slot] = BLEND_MODE_CODES[prim.blend]
            records["blend_k"][slot] = prim.blend_k
            attr, gpu_field = _SHAPE_GPU_FIELD[kind]
            records[gpu_field][slot] = getattr(prim, attr)
        return block.view(np.uint8)

    @staticmethod
    def record_offset(kind, slot):
        """Float index of a record's first field (its center) in the packed buffer."""
        if kind not in _RECORD_DTYPES:
            raise SceneError(f"Unknown primitive type: {kind}")
        if not 0 <= slot < MAX_PER_TYPE:
            raise SceneError(f"Slot {slot} outside 0..{MAX_PER_TYPE - 1}")
        byte_offset = SCENE_DTYPE.fields[_LIST_NAMES[kind]][1] + slot * _RECORD_DTYPES[kind].itemsize
        return byte_offset // 4

    # --- Persistence ---

    def to_dict(self):
        """Convert the entire scene to a dictionary for JSON serialization."""
        return {_LIST_NAMES[kind]: [p.to_dict() for p in self._list(kind)] for kind in PRIMITIVE_TYPES}

    def from_dict(self, scene_dict):
        """Load a scene from a dictionary (inverse of to_dict). Validates everything first."""
        if not isinstance(scene_dict, dict):
            raise SceneError(f"Scene must be a JSON object, got {type(scene_dict).__name__}")
        loaded = {}
        for kind in PRIMITIVE_TYPES:
            entries = scene_dict.get(_LIST_NAMES[kind], [])
            if not isinstance(entries, list):
                raise SceneError(f"{_LIST_NAMES[kind]} must be a list, got {type(entries).__name__}")
            if len(entries) > self.capacity:
                raise SceneCapacityError(f"{len(entries)} {_LIST_NAMES[kind]} exceed capacity {self.capacity}")
            prims = []
            for entry in entries:
                if not isinstance(entry, dict):
                    raise SceneError(f"Invalid {kind} entry {entry!r}: expected an object")
                try:
                    primitive = PRIMITIVE_CLASSES[kind].from_dict(entry)
                except (TypeError, ValueError) as e:
                    raise SceneError(f"Invalid {kind} entry {entry!r}: {e}")
                self._validate(primitive)
                prims.append(primitive)
            loaded[kind] = prims
        for kind, prims in loaded.items():
            self._list(kind)[:] = prims
        self._changed("load")

    def save_to_json(self, filepath):
        """Save the scene to a JSON file."""
        try:
            with open(filepath, 'w') as f:
                json.dump(self.to_dict(), f, indent=2)
            return True, f"Scene saved to {filepath}"
        except OSError as e:
            return False, f"Error saving scene: {e}"

    def load_from_json(self, filepath):
        """Load a scene from a JSON file."""
        try:
            with open(filepath, 'r') as f:
                scene_dict = json.load(f)
            self.from_dict(scene_dict)
        except FileNotFoundError:
            return False, f"File not found: {filepath}"
        except json.JSONDecodeError:
            return False, f"Invalid JSON file: {filepath}"
        except (OSError, SceneError) as e:
            return False, f"Error loading scene: {e}"
        log.info("Loaded scene from %s: counts=%s", filepath, self.counts())
        return True, f"Scene loaded from {filepath}"
