"""Object picking and dragging.

A click renders an identifier pass (one ObjectID per pixel, RGBA8, red
channel = id / 255), reads back the pixel under the cursor and selects the
primitive it names. Dragging moves the selection in the camera-facing plane
through SceneStore.set_position.
"""

import logging
import math
from collections import namedtuple

import numpy as np

from distance_field import NUM_OBJECT_IDS, DistanceField, decode_object_id
from raymarcher import PICK_MAX_STEPS, RayMarcher

log = logging.getLogger(__name__)

# --- Drag configuration ---
DRAG_SENSITIVITY = 0.002  # World units per pixel per unit of camera distance
DRAG_THRESHOLD = 3.0  # Pixels of motion before a press on the selection becomes a drag

# Picker states
IDLE = "idle"
SELECTED = "selected"
DRAGGING = "dragging"

DragState = namedtuple("DragState", ["obj", "plane_point", "plane_normal"])
PickTicket = namedtuple("PickTicket", ["serial", "x", "y", "width", "height", "forward", "version"])


def id_to_channel(object_id):
    """ObjectID -> normalized red channel value written by the identifier pass."""
    return object_id / 255.0


def channel_to_id(value):
    """Normalized red channel -> ObjectID."""
    return int(round(float(value) * 255.0))


def clamp_pixel(x, y, width, height):
    """Clamp pointer coordinates into the texture."""
    x = min(max(int(math.floor(x)), 0), max(width, 1) - 1)
    y = min(max(int(math.floor(y)), 0), max(height, 1) - 1)
    return x, y


def drag_offset(forward, camera_position, dx, dy, sensitivity=DRAG_SENSITIVITY):
    """World-space move for a pointer delta: camera right flattened onto XZ, world up for dy."""
    right = np.array([-forward[2], 0.0, forward[0]], dtype=np.float64)
    length = np.linalg.norm(right)
    # Looking straight down / up: no horizontal right, use +X
    right = right / length if length > 1e-3 else np.array([1.0, 0.0, 0.0])
    up = np.array([0.0, 1.0, 0.0])
    s = sensitivity * float(np.linalg.norm(camera_position))
    return right * dx * s - up * dy * s


class CpuIdPass:
    """Identifier pass on the CPU: marches only the pixels that are read back."""

    def __init__(self, store, smooth_policy="accumulator", max_steps=PICK_MAX_STEPS):
        self.store = store
        self.smooth_policy = smooth_policy
        self.max_steps = max_steps
        self._frame = None

    def render(self, camera, width, height):
        field = DistanceField(self.store.snapshot(), self.smooth_policy)
        self._frame = (RayMarcher(field, max_steps=self.max_steps), camera.position, camera, width, height)

    def ids(self, camera, width, height):
        """Full identifier image, shape (height, width), row 0 at the top."""
        field = DistanceField(self.store.snapshot(), self.smooth_policy)
        directions = camera.rays(width, height)
        march = RayMarcher(field, max_steps=self.max_steps).march_many(camera.position, directions)
        return np.where(march.hit, march.object_id, 0)

    def read_pixel(self, x, y):
        """RGBA8 value at (x, y), top-left origin."""
        if self._frame is None:
            raise RuntimeError("read_pixel called before render")
        marcher, origin, camera, width, height = self._frame
        x, y = clamp_pixel(x, y, width, height)
        _, direction = camera.ray(x, y, width, height)
        march = marcher.march_many(origin, direction)
        object_id = int(march.object_id) if bool(march.hit) else 0
        red = int(round(id_to_channel(object_id) * 255.0))
        return red, 0, 0, 255


class ObjectPicker:
    """Selection state machine: idle -> selected -> dragging -> selected / idle."""

    def __init__(self, store, id_pass=None, drag_threshold=DRAG_THRESHOLD, sensitivity=DRAG_SENSITIVITY):
        self.store = store
        self.id_pass = id_pass if id_pass is not None else CpuIdPass(store)
        self.drag_threshold = drag_threshold
        self.sensitivity = sensitivity

        self.state = IDLE
        self.selected = None  # (kind, slot)
        self.drag_state = None
        self._pending = [0.0, 0.0]
        self._serial = 0

        # Hooks
        self.on_object_selected = None
        self.on_object_moved = None
        self.on_selection_cleared = None

        store.subscribe(self._scene_changed)

    # --- Picking ---

    def begin_pick(self, x, y, camera, width, height):
        """Submit an identifier pass for a click. Only the newest ticket gets applied."""
        self._serial += 1
        self.id_pass.render(camera, width, height)
        return PickTicket(self._serial, x, y, width, height, camera.forward, self.store.version)

    def finish_pick(self, ticket):
        """Read back the clicked pixel and update the selection. Returns the selected (kind, slot) or None."""
        if ticket.serial != self._serial:
            log.debug("Discarding pick %d, superseded by %d", ticket.serial, self._serial)
            return None

        rgba = self.id_pass.read_pixel(ticket.x, ticket.y)
        object_id = channel_to_id(rgba[0] / 255.0)
        obj = decode_object_id(object_id) if object_id < NUM_OBJECT_IDS else None
        log.debug("Pick at (%s, %s): rgba=%s id=%d obj=%s", ticket.x, ticket.y, tuple(rgba), object_id, obj)

        if obj is None or not self.store.exists(obj):
            self.deselect()
            return None

        self.selected = obj
        self.state = SELECTED
        self.drag_state = DragState(obj, np.array(self.store.get_position(obj)), np.array(ticket.forward))
        self._pending = [0.0, 0.0]
        if self.on_object_selected:
            self.on_object_selected(obj)
        return obj

    def pick(self, x, y, camera, width, height):
        return self.finish_pick(self.begin_pick(x, y, camera, width, height))

    def select(self, obj):
        """Select without a pick, e.g. from the scene tree."""
        if not self.store.exists(obj):
            self.deselect()
            return
        self.selected = tuple(obj)
        self.state = SELECTED
        self.drag_state = DragState(self.selected, np.array(self.store.get_position(obj)), None)
        self._pending = [0.0, 0.0]
        if self.on_object_selected:
            self.on_object_selected(self.selected)

    def deselect(self):
        had_selection = self.selected is not None
        self.selected = None
        self.drag_state = None
        self.state = IDLE
        self._pending = [0.0, 0.0]
        if had_selection and self.on_selection_cleared:
            self.on_selection_cleared()

    # --- Dragging ---

    def begin_drag(self, x, y):
        """Pointer pressed on the selection. Motion is held back until it passes the threshold."""
        if self.state == IDLE:
            return False
        self._pending = [0.0, 0.0]
        return True

    def update_drag(self, dx, dy, camera):
        """Apply pointer motion. Returns the new position once dragging, otherwise None."""
        if self.state == IDLE or self.drag_state is None:
            return None
        if self.state == SELECTED:
            self._pending[0] += dx
            self._pending[1] += dy
            if math.hypot(*self._pending) < self.drag_threshold:
                return None
            self.state = DRAGGING
            dx, dy = self._pending
            self._pending = [0.0, 0.0]

        obj = self.drag_state.obj
        new = self.drag_state.plane_point + drag_offset(camera.forward, camera.position, dx, dy, self.sensitivity)
        self.store.set_position(obj, new.tolist())
        if self.on_object_moved:
            self.on_object_moved(obj, new)
        return new

    def end_drag(self):
        if self.state == DRAGGING:
            self.state = SELECTED
        self._pending = [0.0, 0.0]

    def _scene_changed(self, store, change):
        if self.selected is None:
            return
        kind, slot = self.selected
        if change.action in ("clear", "load"):
            self.deselect()
        elif change.action == "remove" and change.kind == kind:
            if change.slot == slot:
                log.debug("Selected %s was removed", self.selected)
                self.deselect()
            elif change.slot < slot:
                # Compaction shifted the selection down one slot
                self.selected = (kind, slot - 1)
                self.drag_state = self.drag_state._replace(obj=self.selected)
        elif change.action == "edit" and (change.kind, change.slot) == self.selected:
            # Drag continues from the stored position
            self.drag_state = self.drag_state._replace(plane_point=np.array(store.get_position(self.selected)))
        if self.selected is not None and not store.exists(self.selected):
            self.deselect()
