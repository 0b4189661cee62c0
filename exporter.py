import logging
import os

import numpy as np
from skimage import io, measure

from distance_field import DistanceField

log = logging.getLogger(__name__)

DEFAULT_GRID_SIZE = 64
DEFAULT_BOUNDS = ((-3.0, -3.0, -3.0), (3.0, 3.0, 3.0))


def grid_axes(grid_size, bounds=DEFAULT_BOUNDS):
    """Sample coordinates along x, y, z and the voxel spacing."""
    lo = np.asarray(bounds[0], dtype=np.float64)
    hi = np.asarray(bounds[1], dtype=np.float64)
    axes = [np.linspace(lo[i], hi[i], grid_size) for i in range(3)]
    spacing = tuple(float(v) for v in (hi - lo) / max(grid_size - 1, 1))
    return axes, spacing


def compute_sdf_grid(snapshot, grid_size=DEFAULT_GRID_SIZE, bounds=DEFAULT_BOUNDS, smooth_policy="accumulator"):
    """Sample the primitives' field on a regular grid, indexed [x, y, z].

    The ground plane is left out so the extracted mesh holds the primitives only.
    """
    if grid_size < 2:
        raise ValueError(f"grid_size must be at least 2, got {grid_size}")
    field = DistanceField(snapshot, smooth_policy, include_ground=False)
    axes, _ = grid_axes(grid_size, bounds)
    points = np.stack(np.meshgrid(*axes, indexing="ij"), axis=-1)

    # One z slice at a time keeps the temporaries small
    volume = np.empty((grid_size, grid_size, grid_size), dtype=np.float32)
    for k in range(grid_size):
        volume[:, :, k] = field.distance(points[:, :, k])
    log.info("Sampled %d^3 grid over %s", grid_size, bounds)
    return volume


def export_to_obj(sdf_array, filename, level=0.0, spacing=(1.0, 1.0, 1.0), origin=(0.0, 0.0, 0.0)):
    """Extract the `level` isosurface with marching cubes and write it as OBJ (v / vn / f).

    Returns (success, message) like the scene save / load handlers.
    """
    if sdf_array.dtype != np.float32:
        log.warning("Input array is not float32. Converting from %s.", sdf_array.dtype)
        sdf_array = sdf_array.astype(np.float32)

    try:
        vertices, faces, normals, _ = measure.marching_cubes(sdf_array, level=level, spacing=spacing)
    except (ValueError, RuntimeError) as e:
        # No surface crosses `level` inside the grid
        return False, f"Error during marching cubes: {e}"
    log.info("Marching cubes generated %d vertices and %d faces", len(vertices), len(faces))

    vertices += np.asarray(origin, dtype=vertices.dtype)

    try:
        os.makedirs(os.path.dirname(filename) or '.', exist_ok=True)
        with open(filename, 'w') as f:
            f.write("# OBJ file generated from SDF marching cubes\n")
            for v in vertices:
                f.write(f"v {v[0]:.6f} {v[1]:.6f} {v[2]:.6f}\n")
            for n in normals:
                f.write(f"vn {n[0]:.6f} {n[1]:.6f} {n[2]:.6f}\n")
            for face in faces:
                a, b, c = face + 1
                f.write(f"f {a}//{a} {b}//{b} {c}//{c}\n")
    except OSError as e:
        return False, f"Error writing mesh: {e}"
    return True, f"Exported {len(faces)} faces to {filename}"


def export_scene_to_obj(snapshot, filename, grid_size=DEFAULT_GRID_SIZE, bounds=DEFAULT_BOUNDS,
                        smooth_policy="accumulator"):
    volume = compute_sdf_grid(snapshot, grid_size, bounds, smooth_policy)
    _, spacing = grid_axes(grid_size, bounds)
    return export_to_obj(volume, filename, level=0.0, spacing=spacing, origin=bounds[0])


def save_render(image, filename):
    """Write a float RGB render (values in [0, 1]) as an 8-bit image."""
    data = (np.clip(np.asarray(image, dtype=np.float64), 0.0, 1.0) * 255.0 + 0.5).astype(np.uint8)
    try:
        os.makedirs(os.path.dirname(filename) or '.', exist_ok=True)
        io.imsave(filename, data, check_contrast=False)
    except (OSError, ValueError) as e:
        return False, f"Error saving image: {e}"
    return True, f"Saved {data.shape[1]}x{data.shape[0]} render to {filename}"
