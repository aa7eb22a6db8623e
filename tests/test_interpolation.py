import numpy as np

from fiberprocess.interpolation import sample_field, split_components
from fiberprocess.transform import GridGeometry


def _linear_field(shape=(6, 5, 4)):
    """Two-component field whose values are linear in the voxel index."""
    i, j, k = np.meshgrid(*[np.arange(n) for n in shape], indexing='ij')
    return np.stack([i + 2.0 * j, 3.0 * k - i], -1).astype(np.float64)


def test_trilinear_reproduces_linear_field():
    data = _linear_field()
    indices = np.array([[2.5, 1.25, 0.5], [0.0, 0.0, 0.0], [5.0, 4.0, 3.0]])
    values, inside = sample_field(data, indices)

    expected = np.column_stack([indices[:, 0] + 2 * indices[:, 1],
                                3 * indices[:, 2] - indices[:, 0]])
    assert inside.all()
    np.testing.assert_allclose(values, expected, atol=1e-12)


def test_outside_points_are_nan_and_masked():
    data = _linear_field()
    values, inside = sample_field(data, [[1, 1, 1], [5.5, 0, 0], [-0.5, 0, 0]])

    assert inside.tolist() == [True, False, False]
    assert np.all(np.isfinite(values[0]))
    assert np.all(np.isnan(values[1:]))


def test_all_points_outside():
    values, inside = sample_field(_linear_field(), [[10, 10, 10]])
    assert not inside.any()
    assert values.shape == (1, 2)


def test_geometry_controls_bounds():
    data = _linear_field((3, 3, 3))
    geometry = GridGeometry((3, 3, 3), np.eye(4))
    values, inside = sample_field(data, [[2, 2, 2]], geometry)
    assert inside.all()
    np.testing.assert_allclose(values, [[2 + 4, 6 - 2]])


def test_split_components_are_contiguous():
    planes = split_components(_linear_field())
    assert len(planes) == 2
    assert all(p.flags['C_CONTIGUOUS'] and p.dtype == np.float64 for p in planes)
