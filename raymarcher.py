from collections import namedtuple

import numpy as np

from distance_field import tag_from_id

# --- March limits ---
MAX_STEPS = 256  # Visible pass
PICK_MAX_STEPS = 128  # Identifier pass
SURF_DIST = 0.001  # Convergence threshold
MAX_DIST = 100.0  # Far limit along the ray

HitResult = namedtuple("HitResult", ["distance", "tag", "hit", "steps"])
MarchResult = namedtuple("MarchResult", ["distance", "object_id", "hit", "steps"])


class RayMarcher:
    """Sphere tracing against a DistanceField.

    Every ray advances by the field distance at its current point until it
    converges (d < surf_dist), passes max_dist or runs out of steps. Rays that
    run out of steps count as misses.
    """

    def __init__(self, field, max_steps=MAX_STEPS, surf_dist=SURF_DIST, max_dist=MAX_DIST):
        self.field = field
        self.max_steps = max_steps
        self.surf_dist = surf_dist
        self.max_dist = max_dist

    def march_many(self, origins, directions, max_dist=None):
        """March a batch of rays. `origins` / `directions` are (..., 3); `max_dist` may be per ray."""
        origins = np.asarray(origins, dtype=np.float64)
        directions = np.asarray(directions, dtype=np.float64)
        origins, directions = np.broadcast_arrays(origins, directions)
        shape = origins.shape[:-1]
        o = origins.reshape(-1, 3)
        rd = directions.reshape(-1, 3)
        n = o.shape[0]

        limit = np.broadcast_to(
            np.asarray(self.max_dist if max_dist is None else max_dist, dtype=np.float64), shape
        ).reshape(-1)

        t = np.zeros(n)
        ids = np.zeros(n, dtype=np.int32)
        hit = np.zeros(n, dtype=bool)
        steps = np.zeros(n, dtype=np.int32)
        active = np.ones(n, dtype=bool)

        for _ in range(self.max_steps):
            idx = np.nonzero(active)[0]
            if idx.size == 0:
                break
            sample = self.field.sample(o[idx] + rd[idx] * t[idx, None])
            d = sample.distance
            t[idx] = np.maximum(t[idx] + d, 0.0)
            ids[idx] = sample.object_id
            steps[idx] += 1

            converged = d < self.surf_dist
            escaped = t[idx] > limit[idx]
            hit[idx] = converged & ~escaped
            active[idx] = ~(converged | escaped)

        return MarchResult(
            distance=t.reshape(shape),
            object_id=ids.reshape(shape),
            hit=hit.reshape(shape),
            steps=steps.reshape(shape),
        )

    def march(self, origin, direction):
        """March a single ray. Returns a HitResult with a SurfaceTag (None on a miss)."""
        result = self.march_many(np.reshape(origin, (1, 3)), np.reshape(direction, (1, 3)))
        hit = bool(result.hit[0])
        tag = tag_from_id(int(result.object_id[0])) if hit else None
        return HitResult(float(result.distance[0]), tag, hit, int(result.steps[0]))
