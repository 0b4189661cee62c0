import glfw
from OpenGL.GL import *
import logging
import math
import time
import imgui
from imgui.integrations.glfw import GlfwRenderer

from camera import Camera
from exporter import export_scene_to_obj, save_render
from gpu_pipeline import (
    RAYMARCH_FRAGMENT,
    GpuIdPass,
    RenderPass,
    SceneUniformBuffer,
    ShaderCompileError,
)
from gui.panels import EditorPanels
from picker import IDLE, ObjectPicker
from scene import SceneStore
from shading import render as render_preview


# --- SaveLoad funcions
import tkinter as tk
from tkinter import filedialog


def _ask_path(save, **options):
    root = tk.Tk()
    root.withdraw()  # Hide the root window
    if save:
        filepath = filedialog.asksaveasfilename(**options)
    else:
        filepath = filedialog.askopenfilename(**options)
    root.destroy()
    return filepath


def save_scene_dialog(store):
    """Open a save dialog and save the scene to JSON."""
    filepath = _ask_path(
        True,
        defaultextension=".json",
        filetypes=[("JSON files", "*.json"), ("All files", "*.*")],
        initialfile="scene.json"
    )
    if filepath:
        return store.save_to_json(filepath)
    return False, "Save cancelled"


def load_scene_dialog(store):
    """Open a load dialog and load a scene from JSON."""
    filepath = _ask_path(False, filetypes=[("JSON files", "*.json"), ("All files", "*.*")])
    if filepath:
        return store.load_from_json(filepath)
    return False, "Load cancelled"


def export_obj_dialog(store):
    filepath = _ask_path(
        True,
        defaultextension=".obj",
        filetypes=[("OBJ files", "*.obj"), ("All files", "*.*")],
        initialfile="scene.obj"
    )
    if filepath:
        return export_scene_to_obj(store.snapshot(), filepath)
    return False, "Export cancelled"


def export_png_dialog(store, camera):
    filepath = _ask_path(
        True,
        defaultextension=".png",
        filetypes=[("PNG images", "*.png"), ("All files", "*.*")],
        initialfile="preview.png"
    )
    if filepath:
        image = render_preview(store.snapshot(), camera, PREVIEW_SIZE[0], PREVIEW_SIZE[1])
        return save_render(image, filepath)
    return False, "Export cancelled"


# --- Configuration ---
SCREEN_SIZE = (1200, 700)
PANEL_WIDTH_RATIO = 0.2  # Left and right panel width as ratio of window width
FPS_WINDOW_OFFSET = 25  # Offset from top for FPS window
FPS_WINDOW_WIDTH = 140
FPS_WINDOW_HEIGHT = 30
PREVIEW_SIZE = (320, 240)  # CPU preview export

# --- Camera ---
MOUSE_SENSITIVITY = 0.005
PAN_SENSITIVITY = 0.01
CAMERA_LERP_FACTOR = 0.075
ZOOM_SENSITIVITY = 0.5
MIN_RADIUS = 1.0
MAX_RADIUS = 100.0
MIN_PITCH = -math.radians(89)
MAX_PITCH = math.radians(89)


def seed_demo_scene(store):
    store.add_sphere((0.0, 0.0, 1.0), 0.5, color=[0.9, 0.15, 0.15], ui_name="Red Sphere")
    store.add_sphere((0.7, 0.1, 0.6), 0.35, color=[0.2, 0.8, 0.3], blend="sunion", blend_k=0.3)
    store.add_box((-1.5, -0.5, 0.0), (0.4, 0.5, 0.4), color=[0.3, 0.4, 0.9])
    store.add_torus((1.5, -0.7, -0.5), 0.6, 0.2, color=[0.9, 0.8, 0.3])


def build_passes():
    """Visible pass and identifier pass. Raises ShaderCompileError."""
    return RenderPass(RAYMARCH_FRAGMENT), GpuIdPass()


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s: %(message)s")

    # Initialize GLFW
    if not glfw.init():
        return

    # Create a windowed mode window and its OpenGL context
    window = glfw.create_window(SCREEN_SIZE[0], SCREEN_SIZE[1], "SDF Scene Editor", None, None)
    if not window:
        glfw.terminate()
        return

    # Make the window's context current
    glfw.make_context_current(window)

    # Initialize ImGui
    imgui.create_context()
    impl = GlfwRenderer(window)

    # --- Camera State ---
    target_yaw = math.pi / 2  # Looking down -z from +z
    target_pitch = 0.0
    target_radius = 5.0
    cam_yaw = target_yaw
    cam_pitch = target_pitch
    cam_radius = target_radius
    target_orbit = [0.0, 0.0, 0.0]
    cam_orbit = [0.0, 0.0, 0.0]
    last_x, last_y = 0.0, 0.0
    is_mmb_pressed = False
    is_shift_mmb_pressed = False

    # --- Scene Definition ---
    store = SceneStore()
    seed_demo_scene(store)

    # --- Shaders ---
    shader_compile_error = None
    visible_pass = id_pass = None
    scene_buffer = SceneUniformBuffer()
    try:
        visible_pass, id_pass = build_passes()
    except ShaderCompileError as e:
        shader_compile_error = str(e)
        print(f"Shader compilation error: {e}")

    picker = ObjectPicker(store, id_pass)
    panels = EditorPanels(store, picker)

    # --- Pointer state ---
    is_lmb_pressed = False
    last_lmb_x, last_lmb_y = 0.0, 0.0
    last_key_delete_pressed = False
    last_key_s_pressed = False
    last_key_o_pressed = False

    # --- FPS tracking ---
    fps_clock = time.time()
    fps_frames = 0
    fps_value = 0
    start_time = time.time()

    # --- Main Loop ---
    while not glfw.window_should_close(window):
        glfw.poll_events()
        impl.process_inputs()
        imgui.new_frame()

        # --- FPS calculation ---
        fps_frames += 1
        current_time = time.time()
        if current_time - fps_clock >= 1.0:
            fps_value = fps_frames
            fps_frames = 0
            fps_clock = current_time

        io = imgui.get_io()

        # Get window and rendering dimensions
        width, height = glfw.get_framebuffer_size(window)
        window_width, _ = glfw.get_window_size(window)
        pixel_scale = width / window_width if window_width else 1.0
        menu_bar_height = int(imgui.get_frame_height())
        panel_width = int(width * PANEL_WIDTH_RATIO)
        rendering_width = max(1, width - 2 * panel_width)
        rendering_height = max(1, height - menu_bar_height)

        camera = Camera(cam_yaw, cam_pitch, cam_radius, cam_orbit)

        # Handle MMB press and release for camera control
        if glfw.get_mouse_button(window, glfw.MOUSE_BUTTON_MIDDLE) == glfw.PRESS:
            if not is_mmb_pressed:
                is_mmb_pressed = True
                is_shift_mmb_pressed = (glfw.get_key(window, glfw.KEY_LEFT_SHIFT) == glfw.PRESS or
                                        glfw.get_key(window, glfw.KEY_RIGHT_SHIFT) == glfw.PRESS)
                last_x, last_y = glfw.get_cursor_pos(window)
                glfw.set_input_mode(window, glfw.CURSOR, glfw.CURSOR_DISABLED)
        elif is_mmb_pressed:
            is_mmb_pressed = False
            is_shift_mmb_pressed = False
            glfw.set_input_mode(window, glfw.CURSOR, glfw.CURSOR_NORMAL)

        # Handle mouse wheel input for camera zoom
        if io.mouse_wheel != 0 and not io.want_capture_mouse:
            target_radius -= io.mouse_wheel * ZOOM_SENSITIVITY
            target_radius = max(MIN_RADIUS, min(MAX_RADIUS, target_radius))

        if is_mmb_pressed:
            current_x, current_y = glfw.get_cursor_pos(window)
            dx = current_x - last_x
            dy = current_y - last_y
            last_x, last_y = current_x, current_y
            if is_shift_mmb_pressed:
                # Panning mode: Shift + MMB, moves the orbit center in the view plane
                right, up = camera.right, camera.up
                for i in range(3):
                    target_orbit[i] += (-right[i] * dx + up[i] * dy) * PAN_SENSITIVITY
            else:
                # Rotation mode: MMB only
                target_yaw += dx * MOUSE_SENSITIVITY
                target_pitch += dy * MOUSE_SENSITIVITY
                target_pitch = max(MIN_PITCH, min(MAX_PITCH, target_pitch))

        # --- Interpolate camera ---
        cam_radius += (target_radius - cam_radius) * CAMERA_LERP_FACTOR
        cam_yaw += (target_yaw - cam_yaw) * CAMERA_LERP_FACTOR
        cam_pitch += (target_pitch - cam_pitch) * CAMERA_LERP_FACTOR
        cam_orbit = [c + (t - c) * CAMERA_LERP_FACTOR for c, t in zip(cam_orbit, target_orbit)]

        if io.keys_down[glfw.KEY_HOME]:
            target_orbit = [0.0, 0.0, 0.0]

        # --- Picking and dragging (left mouse button in the viewport) ---
        cursor_x, cursor_y = glfw.get_cursor_pos(window)
        view_x = cursor_x * pixel_scale - panel_width
        view_y = cursor_y * pixel_scale - menu_bar_height
        in_viewport = 0 <= view_x < rendering_width and 0 <= view_y < rendering_height
        lmb_down = glfw.get_mouse_button(window, glfw.MOUSE_BUTTON_LEFT) == glfw.PRESS

        if lmb_down and not is_lmb_pressed:
            is_lmb_pressed = True
            last_lmb_x, last_lmb_y = cursor_x, cursor_y
            if in_viewport and not io.want_capture_mouse and id_pass is not None:
                # Edits made since the last draw must be on the GPU before the identifier pass
                scene_buffer.update(store)
                ticket = picker.begin_pick(view_x, view_y, camera, rendering_width, rendering_height)
                if picker.finish_pick(ticket) is not None:
                    picker.begin_drag(view_x, view_y)
        elif lmb_down and picker.state != IDLE and not io.want_capture_mouse:
            dx = (cursor_x - last_lmb_x) * pixel_scale
            dy = (cursor_y - last_lmb_y) * pixel_scale
            last_lmb_x, last_lmb_y = cursor_x, cursor_y
            if dx or dy:
                picker.update_drag(dx, dy, camera)
        elif not lmb_down and is_lmb_pressed:
            is_lmb_pressed = False
            picker.end_drag()

        # Check Delete key for deletion (with debouncing)
        if io.keys_down[glfw.KEY_DELETE] and picker.selected is not None and not io.want_text_input:
            if not last_key_delete_pressed:
                kind, slot = picker.selected
                store.remove_primitive(kind, slot)
                panels.set_status(f"Deleted {kind} {slot}")
                last_key_delete_pressed = True
        else:
            last_key_delete_pressed = False

        # --- TOP MENU BAR ---
        if imgui.begin_main_menu_bar():
            if imgui.begin_menu("File", True):
                if imgui.menu_item("Save Scene", "Ctrl+S")[0]:
                    success, message = save_scene_dialog(store)
                    panels.set_status(message, success)
                if imgui.menu_item("Load Scene", "Ctrl+O")[0]:
                    success, message = load_scene_dialog(store)
                    panels.set_status(message, success)
                imgui.separator()
                if imgui.menu_item("Export OBJ")[0]:
                    success, message = export_obj_dialog(store)
                    panels.set_status(message, success)
                if imgui.menu_item("Export Preview PNG")[0]:
                    success, message = export_png_dialog(store, camera)
                    panels.set_status(message, success)
                imgui.separator()
                if imgui.menu_item("Exit", "Alt+F4")[0]:
                    glfw.set_window_should_close(window, True)
                imgui.end_menu()
            imgui.end_main_menu_bar()

        # Check Ctrl + S/O
        if io.keys_down[glfw.KEY_S] and io.key_ctrl:
            if not last_key_s_pressed:
                success, message = save_scene_dialog(store)
                panels.set_status(message, success)
                last_key_s_pressed = True
        else:
            last_key_s_pressed = False

        if io.keys_down[glfw.KEY_O] and io.key_ctrl:
            if not last_key_o_pressed:
                success, message = load_scene_dialog(store)
                panels.set_status(message, success)
                last_key_o_pressed = True
        else:
            last_key_o_pressed = False

        # --- RENDER VIEWPORT ---
        glViewport(0, 0, width, height)
        glClearColor(0.1, 0.1, 0.1, 1.0)
        glClear(GL_COLOR_BUFFER_BIT)

        if visible_pass is not None:
            scene_buffer.update(store)
            glViewport(panel_width, 0, rendering_width, rendering_height)
            visible_pass.draw(camera, rendering_width, rendering_height,
                              time.time() - start_time, picker.selected, origin=(panel_width, 0))
            glViewport(0, 0, width, height)

        # --- PANELS ---
        panels.scene_tree(0, menu_bar_height, panel_width, height - menu_bar_height)
        panels.inspector(width - panel_width, menu_bar_height, panel_width, height - menu_bar_height)
        panels.status(width)

        # --- FPS OVERLAY (Top Right, above right panel) ---
        fps_x = width - panel_width - FPS_WINDOW_WIDTH - FPS_WINDOW_OFFSET
        imgui.set_next_window_position(fps_x, FPS_WINDOW_OFFSET)
        imgui.set_next_window_size(FPS_WINDOW_WIDTH, FPS_WINDOW_HEIGHT)
        imgui.begin("FPS", False, imgui.WINDOW_NO_TITLE_BAR | imgui.WINDOW_NO_RESIZE | imgui.WINDOW_NO_MOVE | imgui.WINDOW_ALWAYS_AUTO_RESIZE | imgui.WINDOW_NO_SCROLLBAR)
        imgui.text_colored("FPS: " + str(fps_value), 0.0, 1.0, 0.0, 1.0)
        imgui.end()

        # --- Error Display (if shader compilation failed) ---
        if shader_compile_error:
            action = panels.shader_error(shader_compile_error, width, height)
            if action == "dismiss":
                shader_compile_error = None
            elif action == "reload":
                try:
                    new_visible_pass, new_id_pass = build_passes()
                except ShaderCompileError as e:
                    shader_compile_error = str(e)
                    print(f"Shader compilation error: {e}")
                else:
                    for old_pass in (visible_pass, id_pass):
                        if old_pass is not None:
                            old_pass.delete()
                    visible_pass, id_pass = new_visible_pass, new_id_pass
                    shader_compile_error = None
                    picker.id_pass = id_pass
                    scene_buffer.version = None
                    panels.set_status("Shaders reloaded")

        # Render ImGui
        imgui.render()
        impl.render(imgui.get_draw_data())

        # Swap front and back buffers
        glfw.swap_buffers(window)

    # Clean up
    if visible_pass is not None:
        visible_pass.delete()
    if id_pass is not None:
        id_pass.delete()
    scene_buffer.delete()
    impl.shutdown()
    glfw.terminate()


if __name__ == "__main__":
    main()
