"""
Rasterization of fiber points into a label volume.
"""

import enum
import logging

import numpy as np
import nibabel as nib
from nibabel.filebasedimages import ImageFileError

from .transform import GridGeometry
from .validation import OutOfBoundsEvent, FieldFileError

logger = logging.getLogger(__name__)


class VoxelWriteMode(enum.Enum):
    """What a point does to the voxel it lands in."""

    OVERWRITE_LABEL = "overwrite-label"
    # +1 per point, so this is point density rather than fiber density
    ACCUMULATE_COUNT = "accumulate-count"


class LabelVolume:
    """
    Integer volume that fiber points are written into.

    Parameters
    ----------
    shape : tuple
        Spatial extent (x, y, z).
    affine : np.ndarray
        4x4 voxel -> RAS mm affine.
    header : nibabel header, optional
        Header of the volume the geometry was copied from.
    """

    def __init__(self, shape, affine, header=None):
        self.geometry = GridGeometry(shape, affine)
        self.header = header
        self.data = np.zeros(self.geometry.shape, dtype=np.int32)

    @classmethod
    def like(cls, field):
        """Allocate an empty label volume on the grid of ``field``."""
        return cls(field.geometry.shape, field.geometry.affine, header=getattr(field, 'header', None))

    def voxel_indices(self, points):
        """Voxel index of each world point, rounded half to even, and the inside mask."""
        indices = np.rint(self.geometry.world_to_index(points)).astype(np.int64)
        return indices, self.geometry.contains_voxel(indices)

    def write_points(self, points, mode, label=1, fiber_id=None):
        """
        Write one fiber's points into the volume.

        Points are applied in order, so in ``OVERWRITE_LABEL`` mode the last
        point landing in a voxel wins, and in ``ACCUMULATE_COUNT`` mode every
        point landing in a voxel adds one.

        Parameters
        ----------
        points : np.ndarray
            (N, 3) world positions.
        mode : VoxelWriteMode
        label : int
            Value written in ``OVERWRITE_LABEL`` mode.
        fiber_id : int, optional
            Identity of the fiber, for out-of-bounds reports.

        Returns
        -------
        list of OutOfBoundsEvent
            One event per point whose voxel is outside the volume.
        """
        mode = VoxelWriteMode(mode)
        indices, inside = self.voxel_indices(points)

        events = [OutOfBoundsEvent('voxelize', fiber_id, int(i), tuple(int(v) for v in indices[i]))
                  for i in np.flatnonzero(~inside)]

        ijk = tuple(indices[inside].T)
        if mode is VoxelWriteMode.ACCUMULATE_COUNT:
            # unbuffered add so repeated voxels within one call all count
            np.add.at(self.data, ijk, 1)
        else:
            self.data[ijk] = label
        return events

    def save(self, path):
        """Write the volume as NIfTI; a ``.nii.gz`` path gives a compressed file."""
        img = nib.Nifti1Image(self.data, self.geometry.affine)
        if self.header is not None and hasattr(self.header, 'get_xyzt_units'):
            img.header.set_xyzt_units(*self.header.get_xyzt_units())
        img.header.set_data_dtype(np.int32)
        try:
            nib.save(img, str(path))
        except (OSError, ValueError, ImageFileError) as e:
            raise FieldFileError(path, f"could not write label volume ({e})") from e
        logger.info("Saved label volume => %s", path)

    def __repr__(self):
        return f"LabelVolume({self.geometry!r}, nonzero={int(np.count_nonzero(self.data))})"
