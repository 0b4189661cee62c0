import time

import imgui

from scene import (
    BLEND_MODE_LABELS,
    BLEND_MODES,
    BOX,
    MAX_PER_TYPE,
    PRIMITIVE_TYPES,
    SPHERE,
    TORUS,
    SceneError,
)

STATUS_DURATION = 3.0  # Seconds a status message stays on screen

_TYPE_TITLES = {SPHERE: "Spheres", BOX: "Boxes", TORUS: "Tori"}
_BLEND_LABELS = [BLEND_MODE_LABELS[mode] for mode in BLEND_MODES]
_PANEL_FLAGS = imgui.WINDOW_NO_TITLE_BAR | imgui.WINDOW_NO_RESIZE | imgui.WINDOW_NO_MOVE


class EditorPanels:
    """Scene tree, inspector, status line and shader error window.

    Every edit goes through SceneStore; a rejected edit becomes a status message.
    """

    def __init__(self, store, picker):
        self.store = store
        self.picker = picker
        self.status_message = None
        self.status_time = None
        self.status_ok = True

    def set_status(self, message, ok=True):
        print(message)
        self.status_message = message
        self.status_time = time.time()
        self.status_ok = ok

    def _apply(self, kind, slot, field, value):
        try:
            self.store.set_param(kind, slot, field, value)
        except SceneError as e:
            self.set_status(str(e), ok=False)

    def _add(self, kind):
        try:
            slot = self.store.add_primitive(kind)
        except SceneError as e:
            self.set_status(str(e), ok=False)
            return
        self.picker.select((kind, slot))

    # --- LEFT PANEL: Scene Tree ---

    def scene_tree(self, x, y, width, height):
        imgui.set_next_window_position(x, y)
        imgui.set_next_window_size(width, height)
        imgui.begin("Scene Tree", False, _PANEL_FLAGS)

        for kind in PRIMITIVE_TYPES:
            imgui.text(f"{_TYPE_TITLES[kind]} ({self.store.count(kind)}/{MAX_PER_TYPE}):")
            for slot in range(self.store.count(kind)):
                primitive = self.store.get(kind, slot)
                flags = imgui.TREE_NODE_LEAF
                if self.picker.selected == (kind, slot):
                    flags |= imgui.TREE_NODE_SELECTED
                opened = imgui.tree_node(f"{primitive.ui_name}##{kind}{slot}", flags)
                if imgui.is_item_clicked():
                    self.picker.select((kind, slot))
                if opened:
                    imgui.tree_pop()
            if imgui.button(f"Add {kind.capitalize()}##add_{kind}", -1):
                self._add(kind)
            imgui.spacing()

        imgui.separator()
        imgui.text_colored("Press Delete to remove", 1.0, 1.0, 0.0, 1.0)
        imgui.end()

    # --- RIGHT PANEL: Inspector ---

    def inspector(self, x, y, width, height):
        imgui.set_next_window_position(x, y)
        imgui.set_next_window_size(width, height)
        imgui.begin("Inspector", False, _PANEL_FLAGS)

        obj = self.picker.selected
        if obj is None or not self.store.exists(obj):
            imgui.text("Click an object to select it")
            imgui.end()
            return

        kind, slot = obj
        primitive = self.store.get(kind, slot)
        imgui.text(f"Selected: {primitive.ui_name}")
        imgui.text(f"Type: {kind}  Slot: {slot}")
        imgui.separator()

        changed, name = imgui.input_text("Name##name", primitive.ui_name, 256)
        if changed:
            self._apply(kind, slot, "ui_name", name)

        changed, position = imgui.input_float3("Position##pos", *primitive.position)
        if changed:
            self._apply(kind, slot, "position", position)

        if kind == SPHERE:
            changed, radius = imgui.input_float("Radius", primitive.radius, 0.01, 0.1)
            if changed:
                self._apply(kind, slot, "radius", radius)
        elif kind == BOX:
            changed, size = imgui.input_float3("Half Size##size", *primitive.size)
            if changed:
                self._apply(kind, slot, "size", size)
        else:
            changed, radii = imgui.input_float2("Radii (R, r)##radii", *primitive.radii)
            if changed:
                self._apply(kind, slot, "radii", radii)

        imgui.separator()
        imgui.text("Color:")
        changed, color = imgui.color_edit3("Color##color", *primitive.color)
        if changed:
            self._apply(kind, slot, "color", list(color[:3]))

        imgui.separator()
        imgui.text("Blend:")
        clicked, index = imgui.combo("##blend_mode", BLEND_MODES.index(primitive.blend), _BLEND_LABELS)
        if clicked:
            self._apply(kind, slot, "blend", BLEND_MODES[index])
        changed, blend_k = imgui.slider_float("Strength (k)##blend_k", primitive.blend_k, 0.01, 2.0, "%.3f")
        if changed:
            self._apply(kind, slot, "blend_k", blend_k)

        imgui.spacing()
        if imgui.button("Delete", -1):
            self.store.remove_primitive(kind, slot)
        imgui.end()

    # --- Overlays ---

    def status(self, width):
        if self.status_message is None:
            return
        if time.time() - self.status_time >= STATUS_DURATION:
            self.status_message = None
            return
        imgui.set_next_window_position(width // 2 - 150, 100)
        imgui.begin("Status", False, imgui.WINDOW_NO_TITLE_BAR | imgui.WINDOW_NO_RESIZE | imgui.WINDOW_ALWAYS_AUTO_RESIZE)
        color = (0.0, 1.0, 0.0, 1.0) if self.status_ok else (1.0, 0.0, 0.0, 1.0)
        imgui.text_colored(self.status_message, *color)
        imgui.end()

    def shader_error(self, error, width, height):
        """Shader diagnostic window. Returns "reload", "dismiss" or None."""
        action = None
        imgui.set_next_window_position(width // 2 - 250, height // 2 - 100)
        imgui.set_next_window_size(500, 200)
        imgui.begin("Shader Compilation Error", False)
        imgui.text_colored("Error:", 1.0, 0.0, 0.0, 1.0)
        imgui.text_wrapped(error)
        if imgui.button("Reload shaders"):
            action = "reload"
        imgui.same_line()
        if imgui.button("Dismiss"):
            action = "dismiss"
        imgui.end()
        return action
