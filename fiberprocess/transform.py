import enum

import numpy as np
from nibabel.affines import apply_affine


class CoordinateMode(enum.Enum):
    """How a fiber's stored positions map to world (RAS mm) coordinates."""

    LOCAL_INDEX = "local-index"
    OBJECT_TRANSFORM = "object-transform"


def to_world(positions, spacing, transform, mode):
    """
    Convert stored fiber positions to world coordinates.

    Parameters
    ----------
    positions : np.ndarray
        (N, 3) positions as stored in the bundle.
    spacing : array-like
        Bundle spacing, used in ``LOCAL_INDEX`` mode.
    transform : np.ndarray
        4x4 object-to-world transform. ``LOCAL_INDEX`` mode only uses its
        translation column as the offset.
    mode : CoordinateMode
        Conversion convention for this run.

    Returns
    -------
    np.ndarray
        (N, 3) world coordinates.
    """
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    if mode is CoordinateMode.LOCAL_INDEX:
        spacing = np.asarray(spacing, dtype=np.float64)
        return positions * spacing + np.asarray(transform)[:3, 3]
    if mode is CoordinateMode.OBJECT_TRANSFORM:
        return apply_affine(transform, positions)
    raise ValueError(f"Unknown coordinate mode: {mode!r}")


def from_world(points, spacing, transform, mode):
    """Inverse of :func:`to_world`."""
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if mode is CoordinateMode.LOCAL_INDEX:
        spacing = np.asarray(spacing, dtype=np.float64)
        return (points - np.asarray(transform)[:3, 3]) / spacing
    if mode is CoordinateMode.OBJECT_TRANSFORM:
        return apply_affine(np.linalg.inv(transform), points)
    raise ValueError(f"Unknown coordinate mode: {mode!r}")


class GridGeometry:
    """
    Geometry of a regular 3D grid: its extent and voxel-to-world affine.

    Parameters
    ----------
    shape : tuple
        Spatial shape (x, y, z) of the grid.
    affine : np.ndarray
        4x4 voxel-to-world (RAS mm) affine, as stored in NIfTI headers.
    """

    def __init__(self, shape, affine):
        self.shape = tuple(int(s) for s in shape[:3])
        if len(self.shape) != 3:
            raise ValueError(f"Grid shape must be 3D, got {shape}")
        self.affine = np.asarray(affine, dtype=np.float64)
        if self.affine.shape != (4, 4):
            raise ValueError(f"Grid affine must be 4x4, got shape {self.affine.shape}")
        self.inverse_affine = np.linalg.inv(self.affine)

    @property
    def spacing(self):
        return np.sqrt(np.sum(self.affine[:3, :3] ** 2, axis=0))

    @property
    def origin(self):
        return self.affine[:3, 3].copy()

    @property
    def direction(self):
        return self.affine[:3, :3] / self.spacing

    def world_to_index(self, points):
        """Continuous indices of world points."""
        return apply_affine(self.inverse_affine, np.asarray(points, dtype=np.float64).reshape(-1, 3))

    def index_to_world(self, indices):
        """World coordinates of continuous indices."""
        return apply_affine(self.affine, np.asarray(indices, dtype=np.float64).reshape(-1, 3))

    def contains(self, indices):
        """
        Boolean mask of continuous indices inside the interpolation domain.

        A continuous index is inside when every axis lies in ``[0, size - 1]``,
        the range over which trilinear interpolation needs no extrapolation.
        """
        indices = np.asarray(indices, dtype=np.float64).reshape(-1, 3)
        upper = np.array(self.shape, dtype=np.float64) - 1
        return np.all((indices >= 0) & (indices <= upper), axis=1)

    def locate(self, points):
        """Continuous indices of world points and the mask of those inside the grid."""
        indices = self.world_to_index(points)
        return indices, self.contains(indices)

    def contains_voxel(self, voxels):
        """Boolean mask of integer voxel indices inside the grid extent."""
        voxels = np.asarray(voxels).reshape(-1, 3)
        return np.all((voxels >= 0) & (voxels < np.array(self.shape)), axis=1)

    def identity_positions(self):
        """World coordinate of every voxel center, shape (x, y, z, 3)."""
        grid = np.stack(np.meshgrid(*[np.arange(n) for n in self.shape], indexing='ij'), -1)
        return grid @ self.affine[:3, :3].T + self.affine[:3, -1]

    def __repr__(self):
        return f"GridGeometry(shape={self.shape}, spacing={self.spacing.round(4).tolist()})"
