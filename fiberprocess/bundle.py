"""
Fiber bundle data model.

A bundle is a flat, ordered list of fibers. Each fiber stores its points
column-wise (positions, tensors, scalar fields, display attributes) so that
per-point operations can be vectorized over the whole polyline.
"""

import numpy as np

TENSOR_COMPONENTS = ("xx", "xy", "xz", "yy", "yz", "zz")


class FiberPoint:
    """Single sample along a fiber, materialized from a ``Fiber`` row."""

    __slots__ = ("position", "tensor", "scalars", "radius", "color")

    def __init__(self, position, tensor=None, scalars=None, radius=None, color=None):
        self.position = np.asarray(position, dtype=np.float64)
        self.tensor = None if tensor is None else np.asarray(tensor, dtype=np.float64)
        self.scalars = dict(scalars) if scalars else {}
        self.radius = radius
        self.color = None if color is None else np.asarray(color, dtype=np.float64)

    def __repr__(self):
        return f"FiberPoint(position={self.position.tolist()}, scalars={sorted(self.scalars)})"


class Fiber:
    """
    Ordered polyline of fiber points.

    Parameters
    ----------
    positions : array-like, shape (N, 3)
        Point positions. Their frame depends on the bundle's coordinate mode.
    tensors : array-like, shape (N, 6), optional
        Diffusion tensors in upper-triangular order ``xx, xy, xz, yy, yz, zz``.
    scalars : dict, optional
        Mapping of scalar field name to a length-N array.
    radius : array-like, shape (N,), optional
    color : array-like, shape (N, 3), optional
    identifier : int, optional
    transform : array-like, shape (4, 4), optional
        Object-to-world transform of this fiber. ``None`` means the fiber
        inherits the transform of its bundle.
    """

    def __init__(self, positions, tensors=None, scalars=None, radius=None,
                 color=None, identifier=None, transform=None):
        positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
        n_points = len(positions)
        self.positions = positions

        if tensors is not None:
            tensors = np.asarray(tensors, dtype=np.float64).reshape(-1, 6)
            if len(tensors) != n_points:
                raise ValueError(f"Expected {n_points} tensors, got {len(tensors)}")
        self.tensors = tensors

        self.scalars = {}
        for name, values in (scalars or {}).items():
            values = np.asarray(values, dtype=np.float64).reshape(-1)
            if len(values) != n_points:
                raise ValueError(f"Scalar field '{name}' has {len(values)} values for {n_points} points")
            self.scalars[name] = values

        if radius is not None:
            radius = np.asarray(radius, dtype=np.float64).reshape(-1)
            if len(radius) != n_points:
                raise ValueError(f"Expected {n_points} radii, got {len(radius)}")
        self.radius = radius

        if color is not None:
            color = np.asarray(color, dtype=np.float64).reshape(-1, 3)
            if len(color) != n_points:
                raise ValueError(f"Expected {n_points} colors, got {len(color)}")
        self.color = color

        self.identifier = identifier
        self.transform = None if transform is None else _check_affine(transform)

    def __len__(self):
        return len(self.positions)

    def __iter__(self):
        for i in range(len(self)):
            yield self.point(i)

    def point(self, index):
        """Return the point at ``index`` as a ``FiberPoint``."""
        return FiberPoint(
            self.positions[index],
            tensor=None if self.tensors is None else self.tensors[index],
            scalars={name: float(values[index]) for name, values in self.scalars.items()},
            radius=None if self.radius is None else float(self.radius[index]),
            color=None if self.color is None else self.color[index],
        )

    @classmethod
    def from_points(cls, points, identifier=None, transform=None):
        """Build a fiber from a sequence of ``FiberPoint``."""
        points = list(points)
        if not points:
            return cls(np.zeros((0, 3)), identifier=identifier, transform=transform)

        positions = np.array([p.position for p in points])
        tensors = None
        if all(p.tensor is not None for p in points):
            tensors = np.array([p.tensor for p in points])
        scalars = {name: np.array([p.scalars[name] for p in points])
                   for name in points[0].scalars if all(name in p.scalars for p in points)}
        radius = None
        if all(p.radius is not None for p in points):
            radius = np.array([p.radius for p in points])
        color = None
        if all(p.color is not None for p in points):
            color = np.array([p.color for p in points])
        return cls(positions, tensors=tensors, scalars=scalars, radius=radius,
                   color=color, identifier=identifier, transform=transform)

    def copy(self, **changes):
        """Return a new fiber sharing no arrays with this one, with ``changes`` applied."""
        attrs = {
            'positions': self.positions.copy(),
            'tensors': None if self.tensors is None else self.tensors.copy(),
            'scalars': {name: values.copy() for name, values in self.scalars.items()},
            'radius': None if self.radius is None else self.radius.copy(),
            'color': None if self.color is None else self.color.copy(),
            'identifier': self.identifier,
            'transform': None if self.transform is None else self.transform.copy(),
        }
        attrs.update(changes)
        return Fiber(**attrs)

    def __repr__(self):
        return f"Fiber(identifier={self.identifier}, n_points={len(self)})"


class Bundle:
    """
    Ordered collection of fibers sharing spacing and an object-to-world transform.

    Parameters
    ----------
    fibers : sequence of Fiber
    spacing : array-like of 3 floats
        Strictly positive voxel spacing of the frame the positions are stored in.
    transform : array-like, shape (4, 4), optional
        Invertible object-to-world affine. Identity when omitted.
    identifier : int or str, optional
    dimensions : array-like of 3 ints, optional
        Extent of the voxel grid the bundle was stored against.
    """

    def __init__(self, fibers=(), spacing=(1.0, 1.0, 1.0), transform=None,
                 identifier=0, dimensions=(1, 1, 1)):
        spacing = np.asarray(spacing, dtype=np.float64).reshape(-1)
        if spacing.shape != (3,) or np.any(spacing <= 0):
            raise ValueError(f"Bundle spacing must be 3 strictly positive values, got {spacing}")
        self.spacing = spacing
        self.transform = np.eye(4) if transform is None else _check_affine(transform)
        self.identifier = identifier
        self.dimensions = np.asarray(dimensions, dtype=np.int64).reshape(3)
        self.fibers = list(fibers)
        for fiber in self.fibers:
            if not isinstance(fiber, Fiber):
                raise TypeError(f"Bundle can only hold Fiber objects, got {type(fiber).__name__}")

    @property
    def offset(self):
        """Translation part of the object-to-world transform."""
        return self.transform[:3, 3].copy()

    @property
    def n_points(self):
        return sum(len(f) for f in self.fibers)

    def fiber_transform(self, fiber):
        """Object-to-world transform that applies to ``fiber``."""
        return self.transform if fiber.transform is None else fiber.transform

    def __len__(self):
        return len(self.fibers)

    def __iter__(self):
        return iter(self.fibers)

    def __getitem__(self, index):
        return self.fibers[index]

    def __repr__(self):
        return (f"Bundle(identifier={self.identifier!r}, n_fibers={len(self)}, "
                f"spacing={self.spacing.tolist()})")


def _check_affine(transform):
    transform = np.asarray(transform, dtype=np.float64)
    if transform.shape != (4, 4):
        raise ValueError(f"Transform must be a 4x4 matrix, got shape {transform.shape}")
    if not np.allclose(transform[3], [0, 0, 0, 1]):
        raise ValueError("Transform must be affine (last row 0, 0, 0, 1)")
    if abs(np.linalg.det(transform[:3, :3])) < 1e-12:
        raise ValueError("Transform must be invertible")
    return transform.copy()
