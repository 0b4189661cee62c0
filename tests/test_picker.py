"""Tests for click picking, selection and dragging."""

import os
import sys

import numpy as np
import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from camera import Camera
from picker import (
    DRAGGING,
    IDLE,
    SELECTED,
    CpuIdPass,
    ObjectPicker,
    channel_to_id,
    clamp_pixel,
    drag_offset,
    id_to_channel,
)
from scene import BOX, SPHERE, SceneStore

WIDTH, HEIGHT = 9, 7
CENTER = (4, 3)


@pytest.fixture
def store():
    s = SceneStore()
    s.add_sphere((0.0, 0.0, 1.0), 0.5, color=[1.0, 0.0, 0.0])
    return s


@pytest.fixture
def camera():
    return Camera.from_position((0.0, 0.0, 5.0))


@pytest.fixture
def picker(store):
    return ObjectPicker(store)


def test_channel_codec():
    for object_id in range(31):
        assert channel_to_id(id_to_channel(object_id)) == object_id
    assert channel_to_id(np.float32(1.0 / 255.0)) == 1


def test_clamp_pixel():
    assert clamp_pixel(-5, 10 ** 6, 9, 7) == (0, 6)
    assert clamp_pixel(3.7, 2.2, 9, 7) == (3, 2)


def test_read_pixel_requires_render(store):
    with pytest.raises(RuntimeError):
        CpuIdPass(store).read_pixel(0, 0)


def test_read_pixel_clamps_out_of_range(store, camera):
    id_pass = CpuIdPass(store)
    id_pass.render(camera, WIDTH, HEIGHT)
    r, g, b, a = id_pass.read_pixel(-5, 10 ** 6)
    assert (g, b, a) == (0, 0, 255)
    assert r == 0


def test_id_image_marks_sphere_in_center(store, camera):
    ids = CpuIdPass(store).ids(camera, WIDTH, HEIGHT)
    assert ids.shape == (HEIGHT, WIDTH)
    assert ids[CENTER[1], CENTER[0]] == 1
    assert ids[-1, CENTER[0]] == 0
    assert ids[0, 0] == 0


def test_click_on_sphere_selects_it(picker, camera):
    selected = []
    picker.on_object_selected = selected.append
    obj = picker.pick(*CENTER, camera, WIDTH, HEIGHT)
    assert obj == (SPHERE, 0)
    assert picker.selected == (SPHERE, 0)
    assert picker.state == SELECTED
    assert selected == [(SPHERE, 0)]


def test_click_on_ground_clears_selection(picker, camera):
    cleared = []
    picker.on_selection_cleared = lambda: cleared.append(True)
    picker.pick(*CENTER, camera, WIDTH, HEIGHT)
    assert picker.pick(CENTER[0], HEIGHT - 1, camera, WIDTH, HEIGHT) is None
    assert picker.selected is None
    assert picker.state == IDLE
    assert cleared == [True]


def test_superseded_pick_is_discarded(picker, camera):
    first = picker.begin_pick(*CENTER, camera, WIDTH, HEIGHT)
    second = picker.begin_pick(CENTER[0], HEIGHT - 1, camera, WIDTH, HEIGHT)
    assert picker.finish_pick(first) is None
    assert picker.selected is None
    assert picker.finish_pick(second) is None
    assert picker.state == IDLE


def test_drag_moves_along_camera_right(picker, camera, store):
    moved = []
    picker.on_object_moved = lambda obj, pos: moved.append((obj, pos))
    picker.pick(*CENTER, camera, WIDTH, HEIGHT)
    picker.begin_drag(*CENTER)
    new = picker.update_drag(10.0, 0.0, camera)
    assert picker.state == DRAGGING
    assert np.allclose(new, [10 * 0.002 * 5.0, 0.0, 1.0])
    assert store.get_position((SPHERE, 0)) == pytest.approx([0.1, 0.0, 1.0])
    assert moved[0][0] == (SPHERE, 0)

    picker.end_drag()
    assert picker.state == SELECTED


def test_drag_up_raises_object(picker, camera, store):
    picker.pick(*CENTER, camera, WIDTH, HEIGHT)
    picker.begin_drag(*CENTER)
    picker.update_drag(0.0, -10.0, camera)
    assert store.get_position((SPHERE, 0)) == pytest.approx([0.0, 0.1, 1.0])


def test_small_moves_accumulate_until_threshold(picker, camera, store):
    picker.pick(*CENTER, camera, WIDTH, HEIGHT)
    picker.begin_drag(*CENTER)
    assert picker.update_drag(1.0, 0.0, camera) is None
    assert picker.update_drag(1.0, 0.0, camera) is None
    assert picker.state == SELECTED
    assert store.get_position((SPHERE, 0)) == [0.0, 0.0, 1.0]

    new = picker.update_drag(1.5, 0.0, camera)
    # The held-back motion is applied in full
    assert new[0] == pytest.approx(3.5 * 0.002 * 5.0)
    assert picker.state == DRAGGING


def test_drag_without_selection_does_nothing(picker, camera, store):
    assert picker.begin_drag(0, 0) is False
    assert picker.update_drag(50.0, 0.0, camera) is None
    assert store.get_position((SPHERE, 0)) == [0.0, 0.0, 1.0]


def test_removing_selected_object_deselects(picker, camera, store):
    picker.pick(*CENTER, camera, WIDTH, HEIGHT)
    store.remove_primitive(SPHERE, 0)
    assert picker.selected is None
    assert picker.state == IDLE


def test_select_from_tree(picker, store):
    store.add_box((1.0, 0.0, 0.0), (0.5, 0.5, 0.5))
    picker.select((BOX, 0))
    assert picker.selected == (BOX, 0)
    picker.select((BOX, 4))
    assert picker.selected is None


def test_drag_offset_looking_down_falls_back_to_x():
    offset = drag_offset(np.array([0.0, -1.0, 0.0]), np.array([0.0, 5.0, 0.0]), 10.0, 0.0)
    assert np.allclose(offset, [0.1, 0.0, 0.0])


class _FakeIdPass:
    """Stands in for the GPU pass: returns a fixed pixel."""

    def __init__(self, red):
        self.red = red
        self.rendered = 0

    def render(self, camera, width, height):
        self.rendered += 1

    def read_pixel(self, x, y):
        return self.red, 0, 0, 255


def test_picker_accepts_any_id_pass(store, camera):
    store.add_box((1.0, 0.0, 0.0), (0.5, 0.5, 0.5))
    fake = _FakeIdPass(red=11)
    picker = ObjectPicker(store, id_pass=fake)
    assert picker.pick(0, 0, camera, WIDTH, HEIGHT) == (BOX, 0)
    assert fake.rendered == 1

    # Out-of-band id and empty slot
    fake.red = 200
    assert picker.pick(0, 0, camera, WIDTH, HEIGHT) is None
    fake.red = 25
    assert picker.pick(0, 0, camera, WIDTH, HEIGHT) is None


@pytest.fixture
def two_spheres():
    s = SceneStore()
    s.add_sphere((0.0, 0.0, 1.0), 0.5, ui_name="A")
    s.add_sphere((3.0, 0.0, 0.0), 0.5, ui_name="B")
    return s


def test_deleting_selected_slot_does_not_select_the_next_one(two_spheres, camera):
    picker = ObjectPicker(two_spheres)
    cleared = []
    picker.on_selection_cleared = lambda: cleared.append(True)
    assert picker.pick(*CENTER, camera, WIDTH, HEIGHT) == (SPHERE, 0)

    two_spheres.remove_primitive(SPHERE, 0)
    assert two_spheres.get(SPHERE, 0).ui_name == "B"
    assert picker.selected is None
    assert picker.state == IDLE
    assert cleared == [True]

    # A stray drag must not move the sphere that took over slot 0
    assert picker.update_drag(10.0, 0.0, camera) is None
    assert two_spheres.get_position((SPHERE, 0)) == [3.0, 0.0, 0.0]


def test_deleting_an_earlier_slot_keeps_the_same_object_selected(two_spheres, camera):
    picker = ObjectPicker(two_spheres)
    picker.select((SPHERE, 1))

    two_spheres.remove_primitive(SPHERE, 0)
    assert picker.selected == (SPHERE, 0)
    assert two_spheres.get(SPHERE, 0).ui_name == "B"

    picker.begin_drag(0, 0)
    picker.update_drag(10.0, 0.0, camera)
    assert two_spheres.get_position((SPHERE, 0)) == pytest.approx([3.1, 0.0, 0.0])


def test_deleting_another_type_keeps_selection(two_spheres):
    two_spheres.add_box((1.0, 0.0, 0.0), (0.5, 0.5, 0.5))
    picker = ObjectPicker(two_spheres)
    picker.select((SPHERE, 1))
    two_spheres.remove_primitive(BOX, 0)
    assert picker.selected == (SPHERE, 1)


def test_clear_and_load_drop_selection(two_spheres, tmp_path):
    path = tmp_path / "scene.json"
    two_spheres.save_to_json(str(path))
    picker = ObjectPicker(two_spheres)

    picker.select((SPHERE, 0))
    ok, _ = two_spheres.load_from_json(str(path))
    assert ok
    assert picker.selected is None

    picker.select((SPHERE, 1))
    two_spheres.clear()
    assert picker.selected is None


def test_drag_follows_panel_edits(picker, camera, store):
    picker.pick(*CENTER, camera, WIDTH, HEIGHT)
    store.set_position((SPHERE, 0), (1.0, 0.0, 1.0))
    picker.begin_drag(*CENTER)
    picker.update_drag(10.0, 0.0, camera)
    assert store.get_position((SPHERE, 0)) == pytest.approx([1.1, 0.0, 1.0])


def test_consecutive_drags_accumulate(picker, camera, store):
    picker.pick(*CENTER, camera, WIDTH, HEIGHT)
    picker.begin_drag(*CENTER)
    picker.update_drag(10.0, 0.0, camera)
    picker.update_drag(10.0, 0.0, camera)
    assert store.get_position((SPHERE, 0)) == pytest.approx([0.2, 0.0, 1.0])
