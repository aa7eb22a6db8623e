from collections import namedtuple

import numpy as np

from .tensor_metrics import attribute_tensors
from .transform import to_world
from .validation import OutOfBoundsEvent

FiberResult = namedtuple('FiberResult', 'fiber sample_points events')
FiberResult.__doc__ = """\
Outcome of transforming one fiber.

``fiber`` is the new output fiber (identifier not yet reassigned),
``sample_points`` the (N, 3) warped world positions used for tensor sampling
and voxelization, ``events`` the recoverable out-of-bounds events.
"""


def warp_points(world_points, deformation_field=None, fiber_id=None):
    """
    Displace world points through a deformation field.

    Parameters
    ----------
    world_points : np.ndarray
        (N, 3) world positions.
    deformation_field : DeformationField, optional
        Relative displacement field in mm. Without one the points are
        returned unchanged.
    fiber_id : int, optional
        Identity of the fiber, for out-of-bounds reports.

    Returns
    -------
    np.ndarray
        (N, 3) warped positions. Points outside the field keep their input
        position.
    list of OutOfBoundsEvent
        One ``'warp'`` event per point outside the field.
    """
    world_points = np.asarray(world_points, dtype=np.float64).reshape(-1, 3)
    warped = world_points.copy()
    if deformation_field is None:
        return warped, []

    displacement, inside, indices = deformation_field.sample(world_points)
    # displacement is already in mm, added as is
    warped[inside] += displacement[inside]

    events = [OutOfBoundsEvent('warp', fiber_id, int(i), tuple(float(v) for v in indices[i]))
              for i in np.flatnonzero(~inside)]
    return warped, events


def transform_fiber(fiber, spacing, transform, coordinate_mode, deformation_field=None,
                    tensor_field=None, warp_output=False):
    """
    Warp one fiber and attribute tensor data to its points.

    Parameters
    ----------
    fiber : Fiber
        Input fiber; it is not modified.
    spacing : np.ndarray
        Spacing of the bundle the fiber belongs to.
    transform : np.ndarray
        Object-to-world transform that applies to the fiber.
    coordinate_mode : CoordinateMode
        Convention used to turn stored positions into world coordinates.
    deformation_field : DeformationField, optional
    tensor_field : TensorField, optional
        Field resampled at the warped positions. Without one the input
        tensors and scalar fields are passed through unchanged.
    warp_output : bool
        Emit warped world positions instead of the original positions.

    Returns
    -------
    FiberResult
    """
    world = to_world(fiber.positions, spacing, transform, coordinate_mode)
    warped, events = warp_points(world, deformation_field, fiber.identifier)

    changes = {}
    if tensor_field is not None:
        tensors, metrics = attribute_tensors(warped, tensor_field, fiber.identifier)
        scalars = {name: values.copy() for name, values in fiber.scalars.items()}
        scalars.update(metrics)
        changes.update(tensors=tensors, scalars=scalars)

    if warp_output:
        changes.update(positions=warped.copy(), transform=None)

    return FiberResult(fiber.copy(**changes), warped, events)
