import numpy as np
import pytest

from fiberprocess.transform import CoordinateMode, GridGeometry, from_world, to_world


def _rotation_z(offset=(10.0, 0.0, 0.0)):
    transform = np.array([[0.0, -1.0, 0.0, 0.0],
                          [1.0, 0.0, 0.0, 0.0],
                          [0.0, 0.0, 1.0, 0.0],
                          [0.0, 0.0, 0.0, 1.0]])
    transform[:3, 3] = offset
    return transform


class TestToWorld:
    """Stored position to world coordinate conventions"""

    def test_local_index_uses_spacing_and_offset(self):
        transform = np.eye(4)
        transform[:3, 3] = [10, 0, 0]
        world = to_world([[1, 1, 1]], [2, 2, 2], transform, CoordinateMode.LOCAL_INDEX)
        np.testing.assert_allclose(world, [[12, 2, 2]])

    def test_object_transform_applies_full_affine(self):
        transform = np.diag([2.0, 2.0, 2.0, 1.0])
        transform[:3, 3] = [10, 0, 0]
        world = to_world([[1, 1, 1]], [1, 1, 1], transform, CoordinateMode.OBJECT_TRANSFORM)
        np.testing.assert_allclose(world, [[12, 2, 2]])

    def test_local_index_ignores_rotation(self):
        transform = _rotation_z()
        local = to_world([[1, 0, 0]], [1, 1, 1], transform, CoordinateMode.LOCAL_INDEX)
        obj = to_world([[1, 0, 0]], [1, 1, 1], transform, CoordinateMode.OBJECT_TRANSFORM)
        np.testing.assert_allclose(local, [[11, 0, 0]])
        np.testing.assert_allclose(obj, [[10, 1, 0]])

    @pytest.mark.parametrize("mode", list(CoordinateMode))
    def test_from_world_inverts_to_world(self, mode):
        transform = _rotation_z(offset=(3.0, -2.0, 5.0))
        positions = np.array([[0.5, 1.5, 2.5], [4.0, -1.0, 0.0]])
        spacing = [1.5, 2.0, 0.5]
        world = to_world(positions, spacing, transform, mode)
        np.testing.assert_allclose(from_world(world, spacing, transform, mode), positions, atol=1e-12)

    def test_unknown_mode_raises(self):
        with pytest.raises(ValueError):
            to_world([[0, 0, 0]], [1, 1, 1], np.eye(4), "voxmm")


class TestGridGeometry:
    """Index conversions and bounds of a regular grid"""

    def setup_method(self):
        affine = np.diag([2.0, 2.0, 2.0, 1.0])
        affine[:3, 3] = [-4.0, -4.0, -4.0]
        self.geometry = GridGeometry((5, 5, 5), affine)

    def test_spacing_and_origin(self):
        np.testing.assert_allclose(self.geometry.spacing, [2, 2, 2])
        np.testing.assert_allclose(self.geometry.origin, [-4, -4, -4])
        np.testing.assert_allclose(self.geometry.direction, np.eye(3))

    def test_world_index_round_trip(self):
        points = np.array([[0.0, 0.0, 0.0], [-4.0, 4.0, 1.0]])
        indices = self.geometry.world_to_index(points)
        np.testing.assert_allclose(indices, [[2, 2, 2], [0, 4, 2.5]])
        np.testing.assert_allclose(self.geometry.index_to_world(indices), points)

    def test_contains_is_inclusive_of_last_index(self):
        inside = self.geometry.contains([[0, 0, 0], [4, 4, 4], [4.0001, 0, 0], [-0.0001, 2, 2]])
        assert inside.tolist() == [True, True, False, False]

    def test_locate(self):
        indices, inside = self.geometry.locate([[0, 0, 0], [100, 0, 0]])
        np.testing.assert_allclose(indices[0], [2, 2, 2])
        assert inside.tolist() == [True, False]

    def test_contains_voxel_is_exclusive_of_extent(self):
        inside = self.geometry.contains_voxel(np.array([[0, 0, 0], [4, 4, 4], [5, 0, 0], [0, -1, 0]]))
        assert inside.tolist() == [True, True, False, False]

    def test_identity_positions(self):
        positions = self.geometry.identity_positions()
        assert positions.shape == (5, 5, 5, 3)
        np.testing.assert_allclose(positions[0, 0, 0], [-4, -4, -4])
        np.testing.assert_allclose(positions[2, 3, 4], [0, 2, 4])

    def test_rejects_non_3d_shape(self):
        with pytest.raises(ValueError):
            GridGeometry((5, 5), np.eye(4))
