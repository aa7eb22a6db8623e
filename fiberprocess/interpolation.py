"""
Trilinear sampling of vector and tensor fields at continuous indices.

Every field in the pipeline goes through the same scheme: first-order
(trilinear) ``scipy.ndimage.map_coordinates`` on each component. Points
outside ``[0, size - 1]`` on any axis are reported as out of bounds instead
of being extrapolated.
"""

import numpy as np
from scipy.ndimage import map_coordinates

from .transform import GridGeometry


def split_components(data):
    """Split an (x, y, z, C) field into C contiguous (x, y, z) planes."""
    data = np.asarray(data)
    if data.ndim != 4:
        raise ValueError(f"Field must have shape (x, y, z, C), got {data.shape}")
    return [np.ascontiguousarray(data[..., c], dtype=np.float64) for c in range(data.shape[3])]


def sample_components(components, indices, geometry):
    """
    Interpolate pre-split field components at continuous indices.

    Parameters
    ----------
    components : list of np.ndarray
        C arrays of shape (x, y, z), see :func:`split_components`.
    indices : array-like
        (N, 3) continuous voxel indices.
    geometry : GridGeometry
        Grid used for the bounds check.

    Returns
    -------
    np.ndarray
        (N, C) interpolated values. Rows of out-of-bounds points are NaN.
    np.ndarray
        (N,) boolean mask, True where the index was inside the grid.
    """
    indices = np.asarray(indices, dtype=np.float64).reshape(-1, 3)
    inside = geometry.contains(indices)

    values = np.full((len(indices), len(components)), np.nan, dtype=np.float64)
    if not np.any(inside):
        return values, inside

    coords = indices[inside].T
    values[inside] = np.stack([
        map_coordinates(plane, coords, order=1, mode='nearest', output=np.float64)
        for plane in components
    ], -1)
    return values, inside


def sample_field(data, indices, geometry=None):
    """
    Interpolate an (x, y, z, C) field at continuous indices.

    Convenience wrapper around :func:`sample_components` for one-off calls;
    the field classes split their data once and reuse the planes.
    """
    data = np.asarray(data)
    if geometry is None:
        geometry = GridGeometry(data.shape[:3], np.eye(4))
    return sample_components(split_components(data), indices, geometry)
