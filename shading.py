"""CPU reference shading for ray-marched hits.

Mirrors the GLSL visible pass (shaders/raymarch_fragment.glsl) constant for
constant, so previews and tests see what the viewport shows.
"""

import logging

import numpy as np

from camera import normalize
from distance_field import DistanceField, encode_object_id
from raymarcher import MAX_STEPS, MarchResult, RayMarcher

log = logging.getLogger(__name__)

# --- Lighting ---
LIGHT_POS = np.array([2.0, 5.0, 3.0])  # Fixed point light
AMBIENT = 0.15
SHADOW_FACTOR = 0.2  # Light left in a shadowed point, never fully black
SPECULAR = 0.3
SHININESS = 32.0
SHADOW_BIAS = 0.01  # Shadow ray origin offset along the normal
NORMAL_EPS = 0.001  # Central-difference step

# --- Atmosphere ---
SKY_TOP = np.array([0.35, 0.55, 0.9])
SKY_BOTTOM = np.array([0.75, 0.85, 1.0])
FOG_DENSITY = 0.02
GAMMA = 2.2

# Selection tint
HIGHLIGHT_COLOR = np.array([1.0, 0.85, 0.2])
HIGHLIGHT_MIX = 0.35

_NORMAL_OFFSETS = np.array([
    [NORMAL_EPS, 0.0, 0.0], [-NORMAL_EPS, 0.0, 0.0],
    [0.0, NORMAL_EPS, 0.0], [0.0, -NORMAL_EPS, 0.0],
    [0.0, 0.0, NORMAL_EPS], [0.0, 0.0, -NORMAL_EPS],
])


def sky(screen_y):
    """Vertical sky gradient, screen_y in [0, 1] from bottom to top."""
    s = np.clip(np.asarray(screen_y, dtype=np.float64), 0.0, 1.0)[..., None]
    return SKY_BOTTOM * (1.0 - s) + SKY_TOP * s


class Shader:
    def __init__(self, field, max_steps=MAX_STEPS, selected=None):
        self.field = field
        self.marcher = RayMarcher(field, max_steps=max_steps)
        # (kind, slot) to tint, or None
        self.selected = selected

    @classmethod
    def for_snapshot(cls, snapshot, smooth_policy="accumulator", **kwargs):
        return cls(DistanceField(snapshot, smooth_policy), **kwargs)

    def estimate_normals(self, points):
        """Central-difference gradient of the field, +Y where the gradient vanishes."""
        points = np.asarray(points, dtype=np.float64)
        d = self.field.distance(points[..., None, :] + _NORMAL_OFFSETS)
        grad = np.stack([d[..., 0] - d[..., 1], d[..., 2] - d[..., 3], d[..., 4] - d[..., 5]], axis=-1)
        length = np.linalg.norm(grad, axis=-1, keepdims=True)
        flat = length < 1e-12
        return np.where(flat, np.array([0.0, 1.0, 0.0]), grad / np.where(flat, 1.0, length))

    def shadow(self, points, normals):
        """1.0 where the light is visible, SHADOW_FACTOR where something blocks it."""
        origins = points + normals * SHADOW_BIAS
        to_light = LIGHT_POS - origins
        light_dist = np.linalg.norm(to_light, axis=-1)
        result = self.marcher.march_many(origins, normalize(to_light), max_dist=light_dist)
        return np.where(result.hit, SHADOW_FACTOR, 1.0)

    def shade_many(self, march, origins, directions, screen_y=None):
        """Color every ray of a MarchResult. Returns linear-to-gamma RGB of shape (..., 3)."""
        origins, directions = np.broadcast_arrays(
            np.asarray(origins, dtype=np.float64), np.asarray(directions, dtype=np.float64)
        )
        if screen_y is None:
            screen_y = 0.5 + 0.5 * directions[..., 1]
        background = np.broadcast_to(sky(screen_y), directions.shape)
        color = np.array(background)

        hit = np.asarray(march.hit)
        if np.any(hit):
            t = np.asarray(march.distance)[hit]
            rd = directions[hit]
            p = origins[hit] + rd * t[:, None]
            n = self.estimate_normals(p)

            albedo = self.field.sample(p, with_color=True).color
            if self.selected is not None:
                tinted = np.asarray(march.object_id)[hit] == encode_object_id(*self.selected)
                albedo = np.where(tinted[:, None], albedo * (1.0 - HIGHLIGHT_MIX) + HIGHLIGHT_COLOR * HIGHLIGHT_MIX, albedo)

            light_dir = normalize(LIGHT_POS - p)
            n_dot_l = np.sum(n * light_dir, axis=-1)
            diffuse = np.maximum(n_dot_l, 0.0)
            reflected = 2.0 * n_dot_l[:, None] * n - light_dir
            specular = SPECULAR * np.maximum(np.sum(reflected * -rd, axis=-1), 0.0) ** SHININESS
            specular = np.where(diffuse > 0.0, specular, 0.0)
            shadow = self.shadow(p, n)

            lit = albedo * (AMBIENT + diffuse * shadow)[:, None] + (specular * shadow)[:, None]
            fog = np.exp(-t * FOG_DENSITY)[:, None]
            color[hit] = background[hit] * (1.0 - fog) + lit * fog

        return np.clip(color, 0.0, 1.0) ** (1.0 / GAMMA)

    def shade(self, hit, origin, direction, screen_y=None):
        """Color of one ray from its HitResult."""
        object_id = hit.tag.object_id() if hit.hit else 0
        march = MarchResult(np.array([hit.distance]), np.array([object_id]), np.array([hit.hit]), np.array([hit.steps]))
        screen_y = None if screen_y is None else np.array([screen_y])
        return self.shade_many(march, np.reshape(origin, (1, 3)), np.reshape(direction, (1, 3)), screen_y)[0]

    def render(self, camera, width, height):
        """Full CPU frame, shape (height, width, 3), row 0 at the top."""
        directions = camera.rays(width, height)
        origins = np.broadcast_to(camera.position, directions.shape)
        march = self.marcher.march_many(origins, directions)
        rows = np.arange(height, dtype=np.float64)
        screen_y = np.broadcast_to(1.0 - (rows[:, None] + 0.5) / height, (height, width))
        log.debug("Rendered %dx%d, %d/%d rays hit", width, height, int(march.hit.sum()), march.hit.size)
        return self.shade_many(march, origins, directions, screen_y)


def render(snapshot, camera, width, height, smooth_policy="accumulator", selected=None):
    return Shader.for_snapshot(snapshot, smooth_policy, selected=selected).render(camera, width, height)

