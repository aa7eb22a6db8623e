import numpy as np
import pytest

from fiberprocess.bundle import Bundle, Fiber, FiberPoint


class TestFiber:
    """Column-wise fiber storage"""

    def test_points_materialize_rows(self):
        fiber = Fiber([[0, 0, 0], [1, 2, 3]], tensors=[[1, 0, 0, 1, 0, 1]] * 2,
                      scalars={'fa': [0.1, 0.2]}, radius=[1, 2], identifier=3)
        points = list(fiber)

        assert len(fiber) == 2
        np.testing.assert_allclose(points[1].position, [1, 2, 3])
        assert points[1].scalars == {'fa': 0.2}
        assert points[1].radius == 2.0
        assert points[0].color is None

    def test_from_points_keeps_scalar_order(self):
        points = [FiberPoint([i, 0, 0], scalars={'md': i, 'fa': 0.5, 'l1': 2.0}) for i in range(3)]
        fiber = Fiber.from_points(points, identifier=9)

        assert list(fiber.scalars) == ['md', 'fa', 'l1']
        np.testing.assert_allclose(fiber.scalars['md'], [0, 1, 2])
        assert fiber.tensors is None
        assert fiber.identifier == 9

    def test_from_no_points(self):
        assert len(Fiber.from_points([])) == 0

    def test_copy_shares_no_arrays(self):
        fiber = Fiber([[0, 0, 0]], scalars={'fa': [0.3]}, transform=np.eye(4))
        clone = fiber.copy()
        clone.positions[0, 0] = 5
        clone.scalars['fa'][0] = 0.9
        clone.transform[0, 3] = 1

        assert fiber.positions[0, 0] == 0
        assert fiber.scalars['fa'][0] == 0.3
        assert fiber.transform[0, 3] == 0

    def test_copy_applies_changes(self):
        fiber = Fiber([[0, 0, 0]], identifier=1)
        assert fiber.copy(identifier=2).identifier == 2

    @pytest.mark.parametrize("kwargs", [
        {'tensors': [[1, 0, 0, 1, 0, 1]]},
        {'scalars': {'fa': [0.1]}},
        {'radius': [1.0]},
        {'color': [[1, 0, 0]]},
    ])
    def test_length_mismatch_raises(self, kwargs):
        with pytest.raises(ValueError):
            Fiber([[0, 0, 0], [1, 1, 1]], **kwargs)


class TestBundle:
    """Bundle geometry and fiber access"""

    def test_defaults(self):
        bundle = Bundle([Fiber([[0, 0, 0], [1, 1, 1]]), Fiber([[2, 2, 2]])])
        assert len(bundle) == 2
        assert bundle.n_points == 3
        np.testing.assert_allclose(bundle.transform, np.eye(4))
        np.testing.assert_allclose(bundle.spacing, [1, 1, 1])

    def test_offset_is_translation(self):
        transform = np.eye(4)
        transform[:3, 3] = [1, 2, 3]
        np.testing.assert_allclose(Bundle(transform=transform).offset, [1, 2, 3])

    def test_fiber_transform_override(self):
        own = np.diag([2.0, 2.0, 2.0, 1.0])
        bundle = Bundle([Fiber([[0, 0, 0]]), Fiber([[0, 0, 0]], transform=own)])
        np.testing.assert_allclose(bundle.fiber_transform(bundle[0]), np.eye(4))
        np.testing.assert_allclose(bundle.fiber_transform(bundle[1]), own)

    @pytest.mark.parametrize("spacing", [[0, 1, 1], [1, -1, 1], [1, 1]])
    def test_invalid_spacing_raises(self, spacing):
        with pytest.raises(ValueError):
            Bundle(spacing=spacing)

    def test_singular_transform_raises(self):
        with pytest.raises(ValueError):
            Bundle(transform=np.diag([1.0, 0.0, 1.0, 1.0]))

    def test_non_fiber_raises(self):
        with pytest.raises(TypeError):
            Bundle([np.zeros((2, 3))])
