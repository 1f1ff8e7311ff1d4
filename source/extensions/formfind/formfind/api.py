"""
formfind Programmatic API — headless facade over the solver.

Wraps a :class:`Solver` with one method per goal and binder kind, live
parameter changes, execution and persistence.  Use it for scripting,
for tests, and as the surface a host application binds its nodes to.

Example::

    from formfind.api import FormFindAPI

    api = FormFindAPI()
    api.add_anchor_goal((0, 0, 0))
    api.add_length_goal((0, 0, 0), (2, 0, 0), target_length=1.0)
    api.add_constant_goal([(2, 0, 0)], constant=(0, 0, -0.1))
    api.execute(iterations=200)
    print(api.positions)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Union

from .config import SolverSettings
from .kernel.binders import LineBinder, PointBinder, PolylineBinder
from .kernel.goal import GeometryBinder, Goal
from .kernel.goals import (
    AnchorGoal,
    CoCircularGoal,
    CoLinearGoal,
    CoPlanarGoal,
    CoSphericalGoal,
    ConstantGoal,
    DirectionGoal,
    EqualLengthsGoal,
    FloorGoal,
    LengthGoal,
    MergeGoal,
    OnCurveGoal,
    OnLineGoal,
    OnPlaneGoal,
    ParallelLinesGoal,
    ShapeMatchingGoal,
)
from .kernel.solver import Solver
from .kernel.vector import Vector3, VectorLike
from .logging_config import setup_logging

logger = logging.getLogger(__name__)

Points = Sequence[VectorLike]


class FormFindAPI:
    """
    Headless programmatic API for building and running a relaxation.

    Parameters:
        settings: Solver settings (merge threshold, weights, threading).
        viewport: Optional host viewport for pointer dragging.
        log_level: When given, configure ``formfind`` console logging
            at this level (see :func:`~formfind.logging_config.setup_logging`).
        log_file: Optional log file, used together with *log_level*.
    """

    def __init__(
        self,
        settings: Optional[SolverSettings] = None,
        viewport=None,
        log_level: Optional[Union[int, str]] = None,
        log_file: Optional[str] = None,
    ):
        if log_level is not None:
            setup_logging(log_level, log_file=log_file)
        self._solver = Solver(settings=settings, viewport=viewport)
        logger.debug("FormFindAPI ready (%s)", self._solver.settings)

    @property
    def solver(self) -> Solver:
        return self._solver

    # =====================================================================
    # Goals
    # =====================================================================

    def add_goal(self, goal: Goal, merge_threshold: Optional[float] = None) -> Goal:
        """Register any goal (built-in or custom) and return it."""
        self._solver.add_goal(goal, merge_threshold)
        return goal

    def add_anchor_goal(
        self, start: VectorLike, anchor: Optional[VectorLike] = None, weight: float = 1000.0,
    ) -> AnchorGoal:
        """Keep the node at *start* pinned to *anchor* (default: *start*)."""
        return self.add_goal(AnchorGoal([start], anchor=anchor, weight=weight))

    def add_constant_goal(
        self, starts: Points, constant: VectorLike = (0.0, 0.0, -0.1), weight: float = 1.0,
    ) -> ConstantGoal:
        return self.add_goal(ConstantGoal(starts, constant=constant, weight=weight))

    def add_floor_goal(
        self, starts: Points, floor_height: float = 0.0, weight: float = 1000.0,
    ) -> FloorGoal:
        return self.add_goal(FloorGoal(starts, floor_height=floor_height, weight=weight))

    def add_length_goal(
        self,
        start1: VectorLike,
        start2: VectorLike,
        target_length: Optional[float] = None,
        weight: float = 1.0,
    ) -> LengthGoal:
        """Keep two nodes at *target_length* (default: their starting distance)."""
        return self.add_goal(LengthGoal([start1, start2], target_length=target_length, weight=weight))

    def add_length_goals(
        self, polyline: Points, target_length: Optional[float] = None, weight: float = 1.0,
    ) -> List[LengthGoal]:
        """One length goal per consecutive pair of *polyline* vertices."""
        pts = list(polyline)
        return [
            self.add_length_goal(a, b, target_length=target_length, weight=weight)
            for a, b in zip(pts, pts[1:])
        ]

    def add_merge_goal(self, starts: Points, weight: float = 1000.0) -> MergeGoal:
        return self.add_goal(MergeGoal(starts, weight=weight))

    def add_on_line_goal(
        self,
        starts: Points,
        origin: VectorLike = (0.0, 0.0, 0.0),
        direction: VectorLike = (1.0, 0.0, 0.0),
        weight: float = 1.0,
    ) -> OnLineGoal:
        return self.add_goal(OnLineGoal(starts, origin=origin, direction=direction, weight=weight))

    def add_on_plane_goal(
        self,
        starts: Points,
        origin: VectorLike = (0.0, 0.0, 0.0),
        normal: VectorLike = (0.0, 0.0, 1.0),
        weight: float = 1.0,
    ) -> OnPlaneGoal:
        return self.add_goal(OnPlaneGoal(starts, origin=origin, normal=normal, weight=weight))

    def add_on_curve_goal(
        self,
        starts: Points,
        closest_point: Callable[[Vector3], VectorLike],
        weight: float = 1.0,
    ) -> OnCurveGoal:
        return self.add_goal(OnCurveGoal(starts, closest_point, weight=weight))

    def add_co_linear_goal(self, starts: Points, weight: float = 1000.0) -> CoLinearGoal:
        return self.add_goal(CoLinearGoal(starts, weight=weight))

    def add_co_planar_goal(self, starts: Points, weight: float = 1.0) -> CoPlanarGoal:
        return self.add_goal(CoPlanarGoal(starts, weight=weight))

    def add_co_circular_goal(self, starts: Points, weight: float = 1.0) -> CoCircularGoal:
        return self.add_goal(CoCircularGoal(starts, weight=weight))

    def add_co_spherical_goal(self, starts: Points, weight: float = 1.0) -> CoSphericalGoal:
        return self.add_goal(CoSphericalGoal(starts, weight=weight))

    def add_direction_goal(
        self,
        start1: VectorLike,
        start2: VectorLike,
        target_direction: Optional[VectorLike] = None,
        weight: float = 1.0,
    ) -> DirectionGoal:
        return self.add_goal(
            DirectionGoal([start1, start2], target_direction=target_direction, weight=weight)
        )

    def add_equal_lengths_goal(self, starts: Points, weight: float = 1.0) -> EqualLengthsGoal:
        """*starts* holds segment end points in pairs."""
        return self.add_goal(EqualLengthsGoal(starts, weight=weight))

    def add_parallel_lines_goal(self, starts: Points, weight: float = 1.0) -> ParallelLinesGoal:
        """*starts* holds segment end points in pairs."""
        return self.add_goal(ParallelLinesGoal(starts, weight=weight))

    def add_shape_matching_goal(
        self,
        starts: Points,
        target_shape: Optional[Points] = None,
        allow_scaling: bool = False,
        weight: float = 1.0,
    ) -> ShapeMatchingGoal:
        return self.add_goal(
            ShapeMatchingGoal(starts, target_shape=target_shape, allow_scaling=allow_scaling, weight=weight)
        )

    # -- Live changes --------------------------------------------------------

    def change_weight(self, goal: Goal, weight: float) -> Goal:
        """Change the weight of any goal."""
        goal.weight = float(weight)
        return goal

    def change_goal(self, goal: Goal, **params: Any) -> Goal:
        """
        Change a goal's parameters while the solver runs.

        Accepts the keyword arguments of that goal's ``change()``; values
        left as ``None`` are kept.
        """
        return goal.change(**params)

    # =====================================================================
    # Geometry binders
    # =====================================================================

    def add_geometry_binder(
        self, binder: GeometryBinder, merge_threshold: Optional[float] = None,
    ) -> GeometryBinder:
        self._solver.add_geometry_binder(binder, merge_threshold)
        return binder

    def add_point_binder(self, starts: Points) -> PointBinder:
        return self.add_geometry_binder(PointBinder(starts))

    def add_line_binder(self, start1: VectorLike, start2: VectorLike) -> LineBinder:
        return self.add_geometry_binder(LineBinder([start1, start2]))

    def add_polyline_binder(self, starts: Points, closed: bool = False) -> PolylineBinder:
        return self.add_geometry_binder(PolylineBinder(starts, closed=closed))

    # =====================================================================
    # Execution
    # =====================================================================

    def execute(
        self,
        iterations: Optional[int] = None,
        milliseconds: Optional[float] = None,
        momentum: Optional[bool] = None,
        reset: bool = False,
    ) -> List[Vector3]:
        """
        Advance the solver and return the node positions.

        Args:
            iterations: Run exactly this many steps.
            milliseconds: Run steps until this wall-clock budget elapses.
                Ignored when *iterations* is given.
            momentum: Override the settings' momentum flag.
            reset: Reset all nodes instead of stepping.

        With neither *iterations* nor *milliseconds* a single step runs.
        """
        if reset:
            self._solver.reset()
        elif iterations is not None:
            self._solver.step_iterations(iterations, momentum)
        elif milliseconds is not None:
            self._solver.step_for(milliseconds, momentum)
        else:
            self._solver.step(momentum)
        return self.positions

    def reset(self):
        self._solver.reset()

    def clear(self):
        self._solver.clear()

    # =====================================================================
    # Queries
    # =====================================================================

    @property
    def positions(self) -> List[Vector3]:
        return self._solver.get_node_positions()

    @property
    def velocities(self) -> List[Vector3]:
        return self._solver.get_node_velocities()

    @property
    def goal_outputs(self) -> List[Any]:
        return self._solver.get_goal_outputs()

    @property
    def geometries(self) -> List[Any]:
        return self._solver.get_geometries()

    @property
    def node_count(self) -> int:
        return self._solver.node_count

    @property
    def goal_count(self) -> int:
        return len(self._solver.goals)

    # =====================================================================
    # Persistence
    # =====================================================================

    def save(self, path: Union[str, Path]):
        """Write the solver state (nodes, goals, binders, settings) as JSON."""
        path = Path(path)
        path.write_text(self._solver.to_json(), encoding="utf-8")
        logger.info("Saved %d nodes and %d goals to %s", self.node_count, self.goal_count, path)

    def load(self, path: Union[str, Path]):
        """
        Replace the current solver with one loaded from *path*.

        The viewport subscription, if any, moves to the new solver.
        """
        path = Path(path)
        restored = Solver.from_json(path.read_text(encoding="utf-8"))
        viewport = self._solver._viewport
        self._solver.dispose()
        if viewport is not None:
            restored.attach_viewport(viewport)
        self._solver = restored
        logger.info("Loaded %d nodes and %d goals from %s", self.node_count, self.goal_count, path)

    def dispose(self):
        self._solver.dispose()
