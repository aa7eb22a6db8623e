import numpy as np

from fiberprocess.bundle import Fiber
from fiberprocess.fields import DeformationField, TensorField
from fiberprocess.streamline_processing import transform_fiber, warp_points
from fiberprocess.transform import CoordinateMode


def _constant_displacement(vector, shape=(10, 10, 10)):
    data = np.zeros(shape + (3,))
    data[...] = vector
    return DeformationField(data, np.eye(4))


def _tensor_field(shape=(10, 10, 10)):
    data = np.zeros(shape + (6,))
    data[...] = [3, 0, 0, 2, 0, 1]
    return TensorField(data, np.eye(4))


class TestWarpPoints:
    """Point displacement through a deformation field"""

    def test_without_field_points_pass_through(self):
        points = np.array([[1.0, 2.0, 3.0]])
        warped, events = warp_points(points)
        np.testing.assert_array_equal(warped, points)
        assert warped is not points
        assert events == []

    def test_inside_points_are_displaced(self):
        field = _constant_displacement([1.0, -0.5, 0.0])
        warped, events = warp_points([[2, 3, 4], [0, 0, 0]], field)
        np.testing.assert_allclose(warped, [[3, 2.5, 4], [1, -0.5, 0]])
        assert events == []

    def test_outside_points_keep_position(self):
        field = _constant_displacement([1.0, 0.0, 0.0])
        warped, events = warp_points([[2, 3, 4], [20, 0, 0], [9.5, 0, 0]], field, fiber_id=5)

        np.testing.assert_allclose(warped, [[3, 3, 4], [20, 0, 0], [9.5, 0, 0]])
        assert [e.point_index for e in events] == [1, 2]
        assert all(e.stage == 'warp' and e.fiber_id == 5 for e in events)
        assert events[0].index == (20.0, 0.0, 0.0)
        assert "original position will be used" in events[0].describe()


class TestTransformFiber:
    """Warping and tensor attribution of one fiber"""

    def setup_method(self):
        self.fiber = Fiber([[1, 1, 1], [2, 2, 2], [3, 3, 3]],
                           scalars={'curvature': [0.1, 0.2, 0.3]}, identifier=4)

    def test_identity_pass_through(self):
        result = transform_fiber(self.fiber, np.ones(3), np.eye(4), CoordinateMode.OBJECT_TRANSFORM)

        np.testing.assert_array_equal(result.fiber.positions, self.fiber.positions)
        np.testing.assert_array_equal(result.sample_points, self.fiber.positions)
        assert result.fiber.tensors is None
        assert list(result.fiber.scalars) == ['curvature']
        assert result.fiber.identifier == 4
        assert result.events == []

    def test_warp_output_emits_world_positions(self):
        transform = np.diag([2.0, 2.0, 2.0, 1.0])
        field = _constant_displacement([1.0, 0.0, 0.0])
        fiber = self.fiber.copy(transform=transform)

        result = transform_fiber(fiber, np.ones(3), transform, CoordinateMode.OBJECT_TRANSFORM,
                                 deformation_field=field, warp_output=True)

        np.testing.assert_allclose(result.fiber.positions, [[3, 2, 2], [5, 4, 4], [7, 6, 6]])
        assert result.fiber.transform is None

    def test_no_warp_keeps_geometry_but_samples_warped(self):
        field = _constant_displacement([1.0, 0.0, 0.0])
        result = transform_fiber(self.fiber, np.ones(3), np.eye(4), CoordinateMode.OBJECT_TRANSFORM,
                                 deformation_field=field, warp_output=False)

        np.testing.assert_array_equal(result.fiber.positions, self.fiber.positions)
        np.testing.assert_allclose(result.sample_points, [[2, 1, 1], [3, 2, 2], [4, 3, 3]])

    def test_tensor_attribution_adds_metrics(self):
        result = transform_fiber(self.fiber, np.ones(3), np.eye(4), CoordinateMode.OBJECT_TRANSFORM,
                                 tensor_field=_tensor_field())

        np.testing.assert_allclose(result.fiber.tensors, [[3, 0, 0, 2, 0, 1]] * 3)
        for name in ('curvature', 'fa', 'md', 'fro', 'l1', 'l2', 'l3'):
            assert name in result.fiber.scalars, f"missing scalar field {name}"
        np.testing.assert_allclose(result.fiber.scalars['curvature'], [0.1, 0.2, 0.3])
        np.testing.assert_allclose(result.fiber.scalars['l1'], [3, 3, 3])

    def test_input_fiber_is_not_modified(self):
        field = _constant_displacement([1.0, 0.0, 0.0])
        result = transform_fiber(self.fiber, np.ones(3), np.eye(4), CoordinateMode.OBJECT_TRANSFORM,
                                 deformation_field=field, tensor_field=_tensor_field(), warp_output=True)
        result.fiber.scalars['curvature'][0] = 99.0

        np.testing.assert_array_equal(self.fiber.positions, [[1, 1, 1], [2, 2, 2], [3, 3, 3]])
        assert self.fiber.tensors is None
        assert set(self.fiber.scalars) == {'curvature'}
        assert self.fiber.scalars['curvature'][0] == 0.1

    def test_local_index_mode(self):
        transform = np.eye(4)
        transform[:3, 3] = [-1, 0, 0]
        result = transform_fiber(self.fiber, np.array([2.0, 2.0, 2.0]), transform,
                                 CoordinateMode.LOCAL_INDEX)
        np.testing.assert_allclose(result.sample_points, [[1, 2, 2], [3, 4, 4], [5, 6, 6]])
