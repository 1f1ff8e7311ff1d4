"""
Goal-based relaxation solver.

Architecture
------------
* Nodes live in one list owned by the solver.  Goals and geometry
  binders refer to them only by index (``node_indices``), assigned once
  at registration by merging each starting position into the first
  existing node closer than the merge threshold, or creating a new node.
* ``step()`` performs one accumulate-and-resolve pass:

  1. with momentum, every node first advances by its velocity;
  2. every goal is evaluated against a write-protected snapshot of the
     node positions, on a thread pool when there are enough goals, and
     the pass joins before going on;
  3. each goal's per-slot ``moves * weights`` and ``weights`` are summed
     per node, in goal registration order;
  4. a held (dragged) node receives one more vote pulling it onto the
     pointer ray, with the interaction weight;
  5. every node with positive total weight moves by the weighted average
     displacement, which is also added to its velocity when momentum is
     on; a velocity that now opposes the move is damped.

  Nodes with zero total weight are skipped in step 5.
* Registration and clearing must not overlap a running ``step``; the
  solver is driven from one thread (or externally synchronised).

Usage::

    solver = Solver()
    solver.add_goal(LengthGoal([(0, 0, 0), (2, 0, 0)], target_length=1.0))
    solver.step_iterations(100, momentum=False)
    a, b = solver.get_node_positions()
"""

from __future__ import annotations

import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable, List, Optional

import numpy as np

from ..config import SolverSettings
from ..exceptions import ConfigError, FormFindError
from .binders import binder_from_dict
from .goal import GeometryBinder, Goal, NodeBinding
from .goals import goal_from_dict
from .node import Node
from .picking import NO_HIT, CameraBasis, Ray, drag_move, find_nearest_node_index
from .vector import Vector3, unit_array

logger = logging.getLogger(__name__)


class Solver:
    """
    Owns nodes, goals and geometry binders and advances the simulation.

    Parameters:
        settings: Solver tunables; defaults to :class:`SolverSettings()`.
        viewport: Optional host viewport to take pointer events from
            (see :mod:`formfind.bridge.viewport`).
    """

    def __init__(self, settings: Optional[SolverSettings] = None, viewport=None):
        self.settings = settings or SolverSettings()
        self.allow_mouse_interaction: bool = True

        self._nodes: List[Node] = []
        self._goals: List[Goal] = []
        self._binders: List[GeometryBinder] = []

        # Interaction state, only touched by the pointer handlers
        self._handle_node_index: int = NO_HIT
        self._nearest_node_index: int = NO_HIT
        self._click_ray: Optional[Ray] = None

        self._executor: Optional[ThreadPoolExecutor] = None
        self._viewport = None
        if viewport is not None:
            self.attach_viewport(viewport)

    # -- State queries -------------------------------------------------------

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes)

    @property
    def goals(self) -> List[Goal]:
        return list(self._goals)

    @property
    def geometry_binders(self) -> List[GeometryBinder]:
        return list(self._binders)

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def handle_node_index(self) -> int:
        """Index of the node being dragged, or ``NO_HIT``."""
        return self._handle_node_index

    @property
    def nearest_node_index(self) -> int:
        """Index of the node under the pointer (hover), or ``NO_HIT``."""
        return self._nearest_node_index

    @property
    def click_ray(self) -> Optional[Ray]:
        return self._click_ray

    def get_node_positions(self) -> List[Vector3]:
        return [node.position for node in self._nodes]

    def get_node_velocities(self) -> List[Vector3]:
        return [node.velocity for node in self._nodes]

    def get_goal_outputs(self) -> List[Any]:
        snapshot = self._snapshot()
        return [goal.get_output(snapshot) for goal in self._goals]

    def get_geometries(self) -> List[Any]:
        snapshot = self._snapshot()
        return [binder.get_geometry(snapshot) for binder in self._binders]

    def _positions_array(self) -> np.ndarray:
        return np.array(
            [node.position.to_tuple() for node in self._nodes], dtype=np.float64,
        ).reshape(-1, 3)

    def _velocities_array(self) -> np.ndarray:
        return np.array(
            [node.velocity.to_tuple() for node in self._nodes], dtype=np.float64,
        ).reshape(-1, 3)

    def _snapshot(self) -> np.ndarray:
        snapshot = self._positions_array()
        snapshot.setflags(write=False)
        return snapshot

    # -- Registration ----------------------------------------------------------

    def add_goal(self, goal: Goal, merge_threshold: Optional[float] = None):
        """
        Register a goal, binding its starting positions to nodes.

        Raises:
            ArityMismatchError: if the goal's starting positions do not
                match its node count.  Nothing is modified in that case.
        """
        if self._register(goal, merge_threshold):
            self._goals.append(goal)

    def add_goals(self, goals: Iterable[Goal], merge_threshold: Optional[float] = None):
        """Register several goals.  All are validated before any is bound."""
        goals = list(goals)
        self._resolve_threshold(merge_threshold)
        for goal in goals:
            self._validate(goal)
        for goal in goals:
            self.add_goal(goal, merge_threshold)

    def add_geometry_binder(self, binder: GeometryBinder, merge_threshold: Optional[float] = None):
        """Register a geometry binder; same merge rule as :meth:`add_goal`."""
        if self._register(binder, merge_threshold):
            self._binders.append(binder)

    def add_geometry_binders(
        self, binders: Iterable[GeometryBinder], merge_threshold: Optional[float] = None,
    ):
        binders = list(binders)
        self._resolve_threshold(merge_threshold)
        for binder in binders:
            self._validate(binder)
        for binder in binders:
            self.add_geometry_binder(binder, merge_threshold)

    def _validate(self, binding: NodeBinding):
        try:
            binding.check_arity()
        except FormFindError:
            logger.warning("Rejected %r: arity mismatch", binding)
            raise
        if binding.starting_positions is None:
            self._check_node_indices(binding)

    def _resolve_threshold(self, merge_threshold: Optional[float]) -> float:
        if merge_threshold is None:
            return self.settings.merge_threshold
        if merge_threshold < 0:
            raise ConfigError(
                "merge_threshold must be non-negative",
                context={"merge_threshold": merge_threshold},
            )
        return float(merge_threshold)

    def _register(self, binding: NodeBinding, merge_threshold: Optional[float]) -> bool:
        """
        Bind *binding* to nodes.  Returns ``False`` for an object that is
        already registered.
        """
        threshold = self._resolve_threshold(merge_threshold)
        if any(b is binding for b in self._goals) or any(b is binding for b in self._binders):
            logger.debug("%r is already registered", binding)
            return False

        self._validate(binding)
        if binding.starting_positions is None:
            # Pre-bound (e.g. restored), nothing to merge
            return True

        binding.node_indices = self._merge_positions(binding.starting_positions, threshold)
        return True

    def _merge_positions(self, positions: List[Vector3], threshold: float) -> List[int]:
        """
        Map each position to the first node within *threshold* (insertion
        order), creating nodes for positions with no match.  Nodes created
        earlier in the same call are candidates for later positions.
        """
        threshold_sq = threshold * threshold
        existing = self._positions_array()
        indices: List[int] = []
        created = 0
        for p in positions:
            pa = p.to_array()
            hit = None
            if len(existing):
                dist_sq = np.sum((existing - pa) ** 2, axis=1)
                matches = np.flatnonzero(dist_sq < threshold_sq)
                if matches.size:
                    hit = int(matches[0])
            if hit is None:
                self._nodes.append(Node(position=p))
                hit = len(self._nodes) - 1
                existing = np.vstack([existing, pa[None, :]])
                created += 1
            indices.append(hit)
        if created:
            logger.debug("Created %d node(s); solver now has %d", created, len(self._nodes))
        return indices

    def clear(self):
        """Remove all nodes, goals and binders and drop interaction state."""
        self._nodes.clear()
        self._goals.clear()
        self._binders.clear()
        self._clear_interaction()

    def reset(self):
        """Return every node to its starting position with zero velocity."""
        for node in self._nodes:
            node.reset()

    # -- Stepping ----------------------------------------------------------------

    def step(self, momentum: Optional[bool] = None):
        """Advance the system by exactly one accumulate-and-resolve pass."""
        if momentum is None:
            momentum = self.settings.momentum
        n = len(self._nodes)
        if n == 0:
            return

        positions = self._positions_array()
        velocities = self._velocities_array()
        if momentum:
            positions += velocities

        snapshot = positions.copy()
        snapshot.setflags(write=False)
        self._evaluate_goals(snapshot)

        move_sums = np.zeros((n, 3), dtype=np.float64)
        weight_sums = np.zeros(n, dtype=np.float64)
        for goal in self._goals:
            if goal.node_count == 0:
                continue
            idx = goal.index_array
            np.add.at(move_sums, idx, goal.moves * goal.weights[:, None])
            np.add.at(weight_sums, idx, goal.weights)

        h = self._handle_node_index
        if h != NO_HIT and self._click_ray is not None and h < n:
            w = self.settings.interaction_weight
            move_sums[h] += w * drag_move(positions[h], self._click_ray)
            weight_sums[h] += w

        active = weight_sums > 0.0
        move = move_sums[active] / weight_sums[active, None]
        positions[active] += move
        vel = velocities[active]
        if momentum:
            vel += move
        opposing = np.einsum("ij,ij->i", vel, move) < 0.0
        vel[opposing] *= self.settings.damping
        velocities[active] = vel

        for node, p, v in zip(self._nodes, positions, velocities):
            node.position = Vector3.from_array(p)
            node.velocity = Vector3.from_array(v)

    def step_iterations(self, iteration_count: int, momentum: Optional[bool] = None):
        """Run :meth:`step` exactly *iteration_count* times."""
        for _ in range(iteration_count):
            self.step(momentum)

    def step_for(self, milliseconds: float, momentum: Optional[bool] = None) -> int:
        """
        Step repeatedly until *milliseconds* of wall time have elapsed.

        Time is only checked between whole steps, so the budget can be
        overrun by up to one step.  Returns the number of steps run.
        """
        start = time.perf_counter()
        deadline = start + milliseconds / 1000.0
        count = 0
        while time.perf_counter() < deadline:
            self.step(momentum)
            count += 1
        logger.debug(
            "Ran %d step(s) in %.2f ms (budget %.2f ms)",
            count, (time.perf_counter() - start) * 1000.0, milliseconds,
        )
        return count

    def _evaluate_goals(self, snapshot: np.ndarray):
        goals = self._goals
        if self.settings.parallel and len(goals) >= max(2, self.settings.parallel_min_goals):
            executor = self._get_executor()
            # Consuming the iterator is the join; it re-raises goal errors
            list(executor.map(lambda goal: goal.evaluate(snapshot), goals))
        else:
            for goal in goals:
                goal.evaluate(snapshot)

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.settings.max_workers,
                thread_name_prefix="formfind-goal",
            )
        return self._executor

    # -- Pointer interaction -------------------------------------------------

    def find_nearest_node_index(
        self,
        ray: Optional[Ray] = None,
        camera: Optional[CameraBasis] = None,
        pick_range: Optional[float] = None,
    ) -> int:
        """
        Screen-space nearest node to *ray* (default: the current pointer
        ray), or ``NO_HIT``.  The camera defaults to the attached
        viewport's.
        """
        ray = ray or self._click_ray
        if ray is None:
            return NO_HIT
        if camera is None:
            if self._viewport is None:
                raise FormFindError(
                    "No camera basis available for picking",
                    suggestions=["Pass camera=... or attach a viewport"],
                )
            camera = self._viewport.get_camera_basis()
        if pick_range is None:
            pick_range = self.settings.pick_range
        return find_nearest_node_index(self._positions_array(), ray, camera, pick_range)

    def _set_click_ray(self, ray: Optional[Ray]):
        if ray is not None:
            unit_array(ray.direction, "pointer ray direction")
            self._click_ray = ray

    def _clear_interaction(self):
        self._handle_node_index = NO_HIT
        self._nearest_node_index = NO_HIT
        self._click_ray = None

    def on_pointer_down(self, event):
        """Grab the node under the pointer when the left button goes down."""
        if not self.allow_mouse_interaction:
            return
        self._set_click_ray(event.ray)
        if event.left_button and self._click_ray is not None:
            self._handle_node_index = self.find_nearest_node_index(self._click_ray)
            if self._handle_node_index != NO_HIT:
                logger.debug("Grabbed node %d", self._handle_node_index)

    def on_pointer_move(self, event):
        """Track the pointer ray and hover target; a released button drops the node."""
        if not self.allow_mouse_interaction:
            return
        self._set_click_ray(event.ray)
        if not event.left_button:
            self._handle_node_index = NO_HIT
        self._nearest_node_index = self.find_nearest_node_index(self._click_ray)

    def on_pointer_up(self, event=None):
        self._clear_interaction()

    def on_camera_changed(self, event=None):
        self._clear_interaction()

    def on_navigation_changed(self, can_navigate=None):
        self._clear_interaction()

    # -- Viewport lifecycle --------------------------------------------------

    def _subscriptions(self):
        from ..bridge.viewport import ViewportEvent
        return (
            (ViewportEvent.POINTER_DOWN, self.on_pointer_down),
            (ViewportEvent.POINTER_MOVE, self.on_pointer_move),
            (ViewportEvent.POINTER_UP, self.on_pointer_up),
            (ViewportEvent.CAMERA_CHANGED, self.on_camera_changed),
            (ViewportEvent.NAVIGATION_CHANGED, self.on_navigation_changed),
        )

    def attach_viewport(self, viewport):
        """Subscribe to *viewport*'s pointer and camera events."""
        if self._viewport is viewport:
            return
        self.detach_viewport()
        for event, handler in self._subscriptions():
            viewport.subscribe(event, handler)
        self._viewport = viewport

    def detach_viewport(self):
        """Unsubscribe from the current viewport, if any."""
        if self._viewport is None:
            return
        for event, handler in self._subscriptions():
            self._viewport.unsubscribe(event, handler)
        self._viewport = None
        self._clear_interaction()

    def dispose(self):
        """Detach from the viewport and stop the worker pool."""
        self.detach_viewport()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "Solver":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.dispose()

    # -- Serialisation ---------------------------------------------------------

    def to_dict(self) -> dict:
        """Serialise nodes, goals, binders and settings to a dict."""
        return {
            "settings": self.settings.to_dict(),
            "nodes": [node.to_dict() for node in self._nodes],
            "goals": [goal.to_dict() for goal in self._goals],
            "geometry_binders": [binder.to_dict() for binder in self._binders],
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Solver":
        """
        Reconstruct a solver.  Goals and binders are re-attached by their
        saved node indices; no merging takes place.
        """
        solver = cls(settings=SolverSettings.from_dict(d.get("settings", {})))
        solver._nodes = [Node.from_dict(nd) for nd in d.get("nodes", [])]
        for gd in d.get("goals", []):
            goal = goal_from_dict(gd)
            solver._validate_bound(goal)
            solver._goals.append(goal)
        for bd in d.get("geometry_binders", []):
            binder = binder_from_dict(bd)
            solver._validate_bound(binder)
            solver._binders.append(binder)
        return solver

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, json_str: str) -> "Solver":
        return cls.from_dict(json.loads(json_str))

    def _validate_bound(self, binding: NodeBinding):
        if not binding.is_bound:
            raise ValueError(f"Serialised {type(binding).__name__} has no node_indices")
        self._check_node_indices(binding)

    def _check_node_indices(self, binding: NodeBinding):
        bad = [i for i in binding.node_indices if not 0 <= i < len(self._nodes)]
        if bad:
            raise IndexError(
                f"{type(binding).__name__} references missing nodes {bad} "
                f"(solver has {len(self._nodes)})"
            )

    def __repr__(self) -> str:
        return (
            f"Solver(nodes={len(self._nodes)}, goals={len(self._goals)}, "
            f"binders={len(self._binders)})"
        )
