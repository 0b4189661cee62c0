import math

import numpy as np

# --- Camera configuration ---
FOV_ANGLE = math.radians(75)  # Vertical field of view, also baked into the shaders
WORLD_UP = np.array([0.0, 1.0, 0.0])
DEFAULT_DISTANCE = 5.0


def orbital_to_cartesian(_yaw, _pitch, _radius):
    x = _radius * math.cos(_pitch) * math.cos(_yaw)
    y = _radius * math.sin(_pitch)
    z = _radius * math.cos(_pitch) * math.sin(_yaw)
    return (x, y, z)


def normalize(v, fallback=None):
    v = np.asarray(v, dtype=np.float64)
    n = np.linalg.norm(v, axis=-1, keepdims=True)
    if fallback is not None and v.ndim == 1 and n[0] < 1e-9:
        return np.asarray(fallback, dtype=np.float64)
    return v / np.maximum(n, 1e-12)


class Camera:
    """Orbit camera: yaw / pitch / distance around a target point.

    The host owns the input handling and writes these fields every frame;
    everything else is derived from them.
    """

    def __init__(self, yaw=0.0, pitch=0.0, distance=DEFAULT_DISTANCE, target=(0.0, 0.0, 0.0), fov=FOV_ANGLE):
        self.yaw = yaw
        self.pitch = pitch
        self.distance = distance
        self.target = np.asarray(target, dtype=np.float64)
        self.fov = fov

    @classmethod
    def from_position(cls, position, target=(0.0, 0.0, 0.0), fov=FOV_ANGLE):
        """Build the orbit parameters that put the eye at `position`."""
        offset = np.asarray(position, dtype=np.float64) - np.asarray(target, dtype=np.float64)
        distance = float(np.linalg.norm(offset))
        if distance == 0.0:
            return cls(distance=0.0, target=target, fov=fov)
        pitch = math.asin(max(-1.0, min(1.0, offset[1] / distance)))
        yaw = math.atan2(offset[2], offset[0])
        return cls(yaw=yaw, pitch=pitch, distance=distance, target=target, fov=fov)

    @property
    def position(self):
        return self.target + np.array(orbital_to_cartesian(self.yaw, self.pitch, self.distance))

    @property
    def forward(self):
        return normalize(self.target - self.position, fallback=(0.0, 0.0, -1.0))

    @property
    def right(self):
        # Straight up / down has no horizontal component, keep +X
        return normalize(np.cross(self.forward, WORLD_UP), fallback=(1.0, 0.0, 0.0))

    @property
    def up(self):
        return np.cross(self.right, self.forward)

    def basis(self):
        forward = self.forward
        right = normalize(np.cross(forward, WORLD_UP), fallback=(1.0, 0.0, 0.0))
        return right, np.cross(right, forward), forward

    def rays(self, width, height):
        """Unit ray directions through every pixel center, shape (height, width, 3). Row 0 is the top."""
        xs = np.arange(width, dtype=np.float64)
        ys = np.arange(height, dtype=np.float64)
        px, py = np.meshgrid(xs, ys)
        return self._directions(px, py, width, height)

    def ray(self, x, y, width, height):
        """Origin and unit direction through pixel (x, y), (0, 0) being the top-left pixel."""
        px = np.asarray(x, dtype=np.float64)
        py = np.asarray(y, dtype=np.float64)
        return self.position, self._directions(px, py, width, height)

    def _directions(self, px, py, width, height):
        right, up, forward = self.basis()
        u = (2.0 * (px + 0.5) - width) / height
        v = (height - 2.0 * (py + 0.5)) / height
        focal = 1.0 / math.tan(self.fov / 2.0)
        d = u[..., None] * right + v[..., None] * up + focal * forward
        return normalize(d)
