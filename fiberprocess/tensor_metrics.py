"""
Tensor resampling along fibers and the scalar maps derived from it.

Scalar fields written on every attributed point:

- ``fa``  fractional anisotropy, in [0, 1]
- ``md``  mean diffusivity, ``trace / 3``
- ``fro`` Frobenius norm over the symmetric tensor
- ``l1``, ``l2``, ``l3`` eigenvalues in descending order (``l1`` largest)
"""

import numpy as np
from dipy.reconst.dti import fractional_anisotropy

from .validation import TensorOutOfBoundsError

METRIC_NAMES = ("fa", "md", "fro", "l1", "l2", "l3")

# upper-triangular component index of each (row, col) entry
_FULL_INDEX = np.array([[0, 1, 2],
                        [1, 3, 4],
                        [2, 4, 5]])


def tensors_to_matrices(components):
    """Expand (N, 6) upper-triangular tensors into (N, 3, 3) symmetric matrices."""
    components = np.asarray(components, dtype=np.float64).reshape(-1, 6)
    return components[:, _FULL_INDEX]


def frobenius_norm(components):
    """Frobenius norm of symmetric tensors given as (N, 6) components."""
    t = np.asarray(components, dtype=np.float64).reshape(-1, 6)
    return np.sqrt(t[:, 0] ** 2 + 2 * t[:, 1] ** 2 + 2 * t[:, 2] ** 2 +
                   t[:, 3] ** 2 + 2 * t[:, 4] ** 2 + t[:, 5] ** 2)


def eigenvalues(components):
    """Eigenvalues of each tensor, (N, 3), sorted descending."""
    evals = np.linalg.eigvalsh(tensors_to_matrices(components))
    return evals[:, ::-1]


def compute_tensor_metrics(components):
    """
    Derive the scalar maps of a set of tensors.

    Parameters
    ----------
    components : array-like
        (N, 6) tensors in upper-triangular order.

    Returns
    -------
    dict
        ``{name: (N,) array}`` for every name in ``METRIC_NAMES``.
    """
    t = np.asarray(components, dtype=np.float64).reshape(-1, 6)
    evals = eigenvalues(t)
    fa = np.clip(np.nan_to_num(fractional_anisotropy(evals)), 0.0, 1.0)
    return {
        'fa': fa,
        'md': (t[:, 0] + t[:, 3] + t[:, 5]) / 3.0,
        'fro': frobenius_norm(t),
        'l1': evals[:, 0],
        'l2': evals[:, 1],
        'l3': evals[:, 2],
    }


def attribute_tensors(world_points, tensor_field, fiber_id=None):
    """
    Resample a tensor field at fiber points and derive its scalar maps.

    Parameters
    ----------
    world_points : np.ndarray
        (N, 3) world positions, already warped when a deformation is used.
    tensor_field : TensorField
        Field to sample. It is expected to cover every point.
    fiber_id : int, optional
        Identity of the fiber, for error reporting.

    Returns
    -------
    np.ndarray
        (N, 6) interpolated tensors.
    dict
        Scalar maps, see :func:`compute_tensor_metrics`.

    Raises
    ------
    TensorOutOfBoundsError
        If any point falls outside the tensor grid.
    """
    tensors, inside, indices = tensor_field.sample(world_points)
    if not np.all(inside):
        first = int(np.flatnonzero(~inside)[0])
        raise TensorOutOfBoundsError(fiber_id, first, indices[first])
    return tensors, compute_tensor_metrics(tensors)
