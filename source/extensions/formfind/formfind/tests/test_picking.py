"""
Tests for screen-space picking and the drag displacement.

The camera looks along +Y from y = -10 with +Z up unless stated
otherwise, so a node at the origin sits at depth 10.
"""

import unittest

import numpy as np


def _camera():
    from formfind.kernel.picking import CameraBasis
    return CameraBasis.of((0, 1, 0), (0, 0, 1))


def _ray(x=0.0, z=0.0):
    from formfind.kernel.picking import Ray
    return Ray.of((x, -10, z), (0, 1, 0))


class TestNearestNode(unittest.TestCase):

    def _find(self, positions, ray=None, pick_range=0.03):
        from formfind.kernel.picking import find_nearest_node_index
        return find_nearest_node_index(np.array(positions, dtype=float), ray or _ray(), _camera(), pick_range)

    def test_hit_on_axis(self):
        self.assertEqual(self._find([(5, 0, 5), (0, 0, 0)]), 1)

    def test_empty(self):
        from formfind.kernel.picking import NO_HIT
        self.assertEqual(self._find(np.zeros((0, 3))), NO_HIT)

    def test_range_is_angular(self):
        """0.2 off-axis at depth 10 is inside the cone; 1.0 is not."""
        from formfind.kernel.picking import NO_HIT

        self.assertEqual(self._find([(0.2, 0, 0)]), 0)
        self.assertEqual(self._find([(1.0, 0, 0)]), NO_HIT)
        # Same lateral offset, farther away: now inside
        self.assertEqual(self._find([(1.0, 90, 0)]), 0)

    def test_custom_range(self):
        from formfind.kernel.picking import NO_HIT

        self.assertEqual(self._find([(1.0, 0, 0)], pick_range=0.2), 0)
        self.assertEqual(self._find([(0.2, 0, 0)], pick_range=0.01), NO_HIT)

    def test_nearest_wins(self):
        self.assertEqual(self._find([(0.2, 0, 0), (0, 0, 0.1)]), 1)

    def test_tie_goes_to_lowest_index(self):
        self.assertEqual(self._find([(0.1, 0, 0), (-0.1, 0, 0)]), 0)
        self.assertEqual(self._find([(5, 5, 5), (0, 0, 0.1), (0, 0, -0.1)]), 1)

    def test_behind_camera_ignored(self):
        from formfind.kernel.picking import NO_HIT

        self.assertEqual(self._find([(0, -20, 0)]), NO_HIT)
        self.assertEqual(self._find([(0, -20, 0), (0, 5, 0)]), 1)

    def test_ray_origin_offset(self):
        """Picking is relative to the ray origin, not the world origin."""
        self.assertEqual(self._find([(0, 0, 0), (3, 0, 0)], ray=_ray(x=3.0)), 1)

    def test_oblique_ray(self):
        from formfind.kernel.picking import Ray

        ray = Ray.of((0, -10, 0), (1, 10, 0))
        self.assertEqual(self._find([(0, 0, 0), (1, 0, 0)], ray=ray), 1)

    def test_pointer_facing_away(self):
        from formfind.kernel.picking import NO_HIT, Ray

        ray = Ray.of((0, -10, 0), (0, -1, 0))
        self.assertEqual(self._find([(0, 0, 0)], ray=ray), NO_HIT)


class TestCameraBasis(unittest.TestCase):

    def test_axes_are_orthonormal(self):
        axes = _camera().axes()
        np.testing.assert_allclose(axes @ axes.T, np.eye(3), atol=1e-12)
        np.testing.assert_allclose(axes[2], [0, 1, 0])
        np.testing.assert_allclose(axes[1], [0, 0, 1])

    def test_unnormalised_input(self):
        from formfind.kernel.picking import CameraBasis

        axes = CameraBasis.of((0, 7, 0), (0, 0, 0.5)).axes()
        np.testing.assert_allclose(axes, _camera().axes())

    def test_parallel_look_and_up(self):
        from formfind.exceptions import DegenerateGeometryError
        from formfind.kernel.picking import CameraBasis

        with self.assertRaises(DegenerateGeometryError):
            CameraBasis.of((0, 0, 1), (0, 0, 2)).axes()

    def test_zero_look(self):
        from formfind.exceptions import DegenerateGeometryError
        from formfind.kernel.picking import CameraBasis

        with self.assertRaises(DegenerateGeometryError):
            CameraBasis.of((0, 0, 0), (0, 0, 1)).axes()

    def test_from_y_up(self):
        """A Y-up viewer looking down -Z maps onto the Z-up +Y camera."""
        from formfind.kernel.picking import CameraBasis
        from formfind.kernel.vector import Vector3

        basis = CameraBasis.from_y_up((0, 0, -1), (0, 1, 0))
        self.assertEqual(basis.look_direction, Vector3(0, 1, 0))
        self.assertEqual(basis.up_direction, Vector3(0, 0, 1))


class TestDragMove(unittest.TestCase):

    def test_move_onto_ray(self):
        from formfind.kernel.picking import drag_move

        move = drag_move(np.array([0.0, 0.0, 0.0]), _ray(x=1.0, z=2.0))
        np.testing.assert_allclose(move, [1, 0, 2])

    def test_point_on_ray_does_not_move(self):
        from formfind.kernel.picking import drag_move

        move = drag_move(np.array([0.0, 25.0, 0.0]), _ray())
        np.testing.assert_allclose(move, [0, 0, 0], atol=1e-12)

    def test_unnormalised_direction(self):
        from formfind.kernel.picking import Ray, drag_move

        move = drag_move(np.array([1.0, 3.0, 0.0]), Ray.of((0, 0, 0), (0, 4, 0)))
        np.testing.assert_allclose(move, [-1, 0, 0])

    def test_zero_direction_raises(self):
        from formfind.exceptions import DegenerateGeometryError
        from formfind.kernel.picking import Ray, drag_move

        with self.assertRaises(DegenerateGeometryError):
            drag_move(np.zeros(3), Ray.of((0, 0, 0), (0, 0, 0)))


class TestSolverPicking(unittest.TestCase):
    """Solver-level picking and the drag vote, driven without a viewport."""

    def setUp(self):
        from formfind.config import SolverSettings
        from formfind.kernel.solver import Solver

        self.solver = Solver(settings=SolverSettings(parallel=False))

    def test_needs_a_camera(self):
        from formfind.exceptions import FormFindError
        from formfind.kernel.binders import PointBinder

        self.solver.add_geometry_binder(PointBinder([(0, 0, 0)]))
        with self.assertRaises(FormFindError):
            self.solver.find_nearest_node_index(_ray())
        self.assertEqual(self.solver.find_nearest_node_index(_ray(), camera=_camera()), 0)

    def test_no_ray_no_hit(self):
        from formfind.kernel.picking import NO_HIT

        self.assertEqual(self.solver.find_nearest_node_index(camera=_camera()), NO_HIT)

    def test_settings_pick_range(self):
        from formfind.config import SolverSettings
        from formfind.kernel.binders import PointBinder
        from formfind.kernel.picking import NO_HIT
        from formfind.kernel.solver import Solver

        self.solver.add_geometry_binder(PointBinder([(1.0, 0, 0)]))
        self.assertEqual(self.solver.find_nearest_node_index(_ray(), camera=_camera()), NO_HIT)

        wide = Solver(settings=SolverSettings(pick_range=0.2, parallel=False))
        wide.add_geometry_binder(PointBinder([(1.0, 0, 0)]))
        self.assertEqual(wide.find_nearest_node_index(_ray(), camera=_camera()), 0)


if __name__ == "__main__":
    unittest.main()
