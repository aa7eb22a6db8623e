"""
Deformation and tensor fields read from NIfTI volumes.

Both field types live on a regular grid described by the NIfTI affine
(voxel -> RAS mm). Deformations are always held as relative displacements in
mm; tensors are always held in upper-triangular component order
``xx, xy, xz, yy, yz, zz``.
"""

import enum
import logging
import zlib

import numpy as np
import nibabel as nib
from nibabel.filebasedimages import ImageFileError

from .interpolation import split_components, sample_components
from .transform import GridGeometry
from .validation import FieldFileError

logger = logging.getLogger(__name__)

# NIfTI symmetric matrices (and dipy) store the lower triangle row by row:
# xx, xy, yy, xz, yz, zz. FSL's dtifit writes the upper triangle.
LOWER_TO_UPPER = [0, 1, 3, 2, 4, 5]

_READ_ERRORS = (OSError, EOFError, ValueError, ImageFileError, zlib.error)


class FieldKind(enum.Enum):
    """Encoding of the vectors stored in a deformation volume."""

    DISPLACEMENT = "displacement"
    HFIELD = "hfield"


class DeformationField:
    """
    Relative displacement field in world units.

    Parameters
    ----------
    data : np.ndarray
        (x, y, z, 3) displacement vectors in mm.
    affine : np.ndarray
        4x4 voxel -> RAS mm affine of the field grid.
    """

    def __init__(self, data, affine):
        data = np.asarray(data, dtype=np.float64)
        if data.ndim != 4 or data.shape[3] != 3:
            raise ValueError(f"Deformation field must have shape (x, y, z, 3), got {data.shape}")
        self.geometry = GridGeometry(data.shape[:3], affine)
        self._components = split_components(data)

    @property
    def shape(self):
        return self.geometry.shape

    @property
    def affine(self):
        return self.geometry.affine

    def sample(self, points):
        """
        Displacements at world points.

        Returns
        -------
        np.ndarray
            (N, 3) displacements, NaN rows where the point is outside.
        np.ndarray
            (N,) inside mask.
        np.ndarray
            (N, 3) continuous indices into the field grid.
        """
        indices = self.geometry.world_to_index(points)
        values, inside = sample_components(self._components, indices, self.geometry)
        return values, inside, indices

    def __repr__(self):
        return f"DeformationField({self.geometry!r})"


class TensorField:
    """
    Diffusion tensor volume.

    Parameters
    ----------
    data : np.ndarray
        (x, y, z, 6) tensors in upper-triangular order.
    affine : np.ndarray
        4x4 voxel -> RAS mm affine.
    header : nibabel header, optional
        Source header, reused when writing volumes on the same grid.
    """

    def __init__(self, data, affine, header=None):
        data = np.asarray(data, dtype=np.float64)
        if data.ndim != 4 or data.shape[3] != 6:
            raise ValueError(f"Tensor field must have shape (x, y, z, 6), got {data.shape}")
        self.geometry = GridGeometry(data.shape[:3], affine)
        self.header = header
        self._components = split_components(data)

    @property
    def shape(self):
        return self.geometry.shape

    @property
    def affine(self):
        return self.geometry.affine

    def sample(self, points):
        """Tensors at world points, with the same return layout as ``DeformationField.sample``."""
        indices = self.geometry.world_to_index(points)
        values, inside = sample_components(self._components, indices, self.geometry)
        return values, inside, indices

    def __repr__(self):
        return f"TensorField({self.geometry!r})"


def load_volume(path):
    """Load a NIfTI volume as float64 data, affine and header."""
    try:
        img = nib.load(str(path))
        data = img.get_fdata(dtype=np.float64)
    except _READ_ERRORS as e:
        raise FieldFileError(path, f"could not read volume ({e})") from e
    return data, img.affine, img.header


def _squeeze_vector_axis(data, n_components, path):
    # ITK writes vector/tensor images as (x, y, z, 1, C)
    if data.ndim == 5 and data.shape[3] == 1:
        data = np.squeeze(data, 3)
    if data.ndim != 4 or data.shape[3] != n_components:
        raise FieldFileError(
            path, f"expected a {n_components}-component volume, got shape {data.shape}"
        )
    return data


def read_deformation_field(path, kind=FieldKind.DISPLACEMENT, lps=False):
    """
    Read a deformation volume and return it as a relative displacement field.

    Parameters
    ----------
    path : str
        NIfTI file holding (x, y, z, 3) or (x, y, z, 1, 3) vectors.
    kind : FieldKind
        ``DISPLACEMENT`` for relative offsets, ``HFIELD`` for absolute
        destination coordinates. H-fields are converted with
        ``displacement = h(x) - x`` where ``x`` is the world position of each
        voxel.
    lps : bool
        Vectors are in ITK/ANTs LPS physical space and are flipped to RAS.

    Returns
    -------
    DeformationField
    """
    kind = FieldKind(kind)
    data, affine, _ = load_volume(path)
    data = _squeeze_vector_axis(data, 3, path)

    if lps:
        # LPS -> RAS
        data[..., :2] *= -1

    if kind is FieldKind.HFIELD:
        data = data - GridGeometry(data.shape[:3], affine).identity_positions()

    logger.debug("Read %s field %s with shape %s", kind.value, path, data.shape[:3])
    return DeformationField(data, affine)


def read_tensor_field(path, order="lower"):
    """
    Read a 6-component diffusion tensor volume.

    Parameters
    ----------
    path : str
        NIfTI file holding (x, y, z, 6) or (x, y, z, 1, 6) tensors.
    order : {'lower', 'upper'}
        Component order on disk. ``'lower'`` is the NIfTI symmetric matrix
        layout (xx, xy, yy, xz, yz, zz); ``'upper'`` is xx, xy, xz, yy, yz, zz.

    Returns
    -------
    TensorField
    """
    if order not in ("lower", "upper"):
        raise ValueError(f"Tensor order must be 'lower' or 'upper', got {order!r}")

    data, affine, header = load_volume(path)
    data = _squeeze_vector_axis(data, 6, path)
    if order == "lower":
        data = data[..., LOWER_TO_UPPER]

    logger.debug("Read tensor volume %s with shape %s", path, data.shape[:3])
    return TensorField(data, affine, header=header)
