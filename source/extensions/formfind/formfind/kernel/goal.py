"""
Goal and geometry-binder contracts.

Both share one registration contract (:class:`NodeBinding`): a fixed
``node_count``, the ``starting_positions`` used once by the solver to
find or create nodes, and the ``node_indices`` the solver writes back.
After registration an object only ever addresses nodes by index.

A :class:`Goal` additionally votes on node movement every step.  The
solver hands :meth:`Goal.evaluate` a write-protected snapshot of all node
positions; the goal gathers its own rows (a private copy), computes one
desired displacement per slot in :meth:`Goal.compute` and keeps the
result in ``moves``.  ``weights`` holds the per-slot vote weight and is
refilled from ``weight`` before every ``compute`` call, so a goal only
touches it when it wants a slot to abstain for the step.

A :class:`GeometryBinder` never votes; it turns node positions into
derived geometry for the host.
"""

from __future__ import annotations

from enum import Enum, auto
from typing import Any, List, Optional, Sequence

import numpy as np

from ..exceptions import ArityMismatchError
from .vector import Vector3, VectorLike


class GoalType(Enum):
    ANCHOR = auto()
    CONSTANT = auto()
    FLOOR = auto()
    LENGTH = auto()
    MERGE = auto()
    ON_LINE = auto()
    ON_PLANE = auto()
    ON_CURVE = auto()
    CO_LINEAR = auto()
    CO_PLANAR = auto()
    CO_CIRCULAR = auto()
    CO_SPHERICAL = auto()
    DIRECTION = auto()
    EQUAL_LENGTHS = auto()
    PARALLEL_LINES = auto()
    SHAPE_MATCHING = auto()
    CUSTOM = auto()


class BinderType(Enum):
    POINT = auto()
    LINE = auto()
    POLYLINE = auto()
    CUSTOM = auto()


def as_points(positions: Optional[Sequence[VectorLike]]) -> Optional[List[Vector3]]:
    if positions is None:
        return None
    return [Vector3.coerce(p) for p in positions]


def points_array(points: Sequence[Vector3]) -> np.ndarray:
    return np.array([p.to_tuple() for p in points], dtype=np.float64).reshape(-1, 3)


# =========================================================================
# Registration contract
# =========================================================================

class NodeBinding:
    """
    Anything the solver binds to nodes by index.

    Args:
        starting_positions: One position per node, used only for node
            lookup/creation at registration.  May be ``None`` when
            ``node_indices`` are supplied directly (e.g. a restored goal).
        node_count: Declared node count; defaults to the number of
            starting positions.
        node_indices: Pre-assigned indices into the solver's node list.
    """

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        node_count: Optional[int] = None,
        node_indices: Optional[Sequence[int]] = None,
    ):
        self.starting_positions: Optional[List[Vector3]] = as_points(starting_positions)
        if node_count is None:
            if self.starting_positions is not None:
                node_count = len(self.starting_positions)
            elif node_indices is not None:
                node_count = len(node_indices)
            else:
                node_count = 0
        self._node_count = int(node_count)
        self._node_indices: Optional[List[int]] = None
        self._index_array: Optional[np.ndarray] = None
        if node_indices is not None:
            self.node_indices = node_indices

    @property
    def node_count(self) -> int:
        return self._node_count

    @property
    def node_indices(self) -> Optional[List[int]]:
        return None if self._node_indices is None else list(self._node_indices)

    @node_indices.setter
    def node_indices(self, indices: Optional[Sequence[int]]):
        if indices is None:
            self._node_indices = None
            self._index_array = None
            return
        indices = [int(i) for i in indices]
        if len(indices) != self._node_count:
            raise ArityMismatchError(
                f"{type(self).__name__} declares {self._node_count} nodes "
                f"but was given {len(indices)} node indices",
                context={"node_count": self._node_count, "node_indices": len(indices)},
            )
        self._node_indices = indices
        self._index_array = np.array(indices, dtype=np.intp)

    @property
    def index_array(self) -> Optional[np.ndarray]:
        """``node_indices`` as an integer array (``None`` until bound)."""
        return self._index_array

    @property
    def is_bound(self) -> bool:
        return self._node_indices is not None

    def check_arity(self):
        """
        Validate the registration contract.

        Raises:
            ArityMismatchError: if the starting positions (or, when there
                are none, the pre-assigned node indices) do not match
                ``node_count``.
        """
        if self.starting_positions is None:
            if self._node_indices is None:
                raise ArityMismatchError(
                    f"{type(self).__name__} has neither starting positions nor node indices",
                    context={"node_count": self._node_count},
                    suggestions=["Pass starting positions when creating the goal"],
                )
            return
        if len(self.starting_positions) != self._node_count:
            raise ArityMismatchError(
                f"{type(self).__name__} declares {self._node_count} nodes but "
                f"supplies {len(self.starting_positions)} starting positions",
                context={
                    "type": type(self).__name__,
                    "node_count": self._node_count,
                    "starting_positions": len(self.starting_positions),
                },
                suggestions=["Pass exactly one starting position per node"],
            )

    def gather(self, snapshot: np.ndarray) -> np.ndarray:
        """Return this object's node positions as a private ``(k, 3)`` copy."""
        if self._index_array is None:
            raise RuntimeError(f"{type(self).__name__} is not registered with a solver")
        return snapshot[self._index_array]

    def _binding_dict(self) -> dict:
        d: dict = {"node_count": self._node_count}
        if self._node_indices is not None:
            d["node_indices"] = list(self._node_indices)
        if self.starting_positions is not None:
            d["starting_positions"] = [list(p.to_tuple()) for p in self.starting_positions]
        return d


# =========================================================================
# Goal
# =========================================================================

class Goal(NodeBinding):
    """
    Base class for all goals.

    Subclasses implement :meth:`compute` and, optionally, :meth:`output`
    and :meth:`_params_dict`.  ``weight`` may be changed between steps.
    """

    goal_type: GoalType = GoalType.CUSTOM

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        weight: float = 1.0,
        node_count: Optional[int] = None,
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, node_count, node_indices)
        self.weight = float(weight)
        self.moves: np.ndarray = np.zeros((self.node_count, 3), dtype=np.float64)
        self.weights: np.ndarray = np.full(self.node_count, self.weight, dtype=np.float64)

    # -- Evaluation -----------------------------------------------------------

    def evaluate(self, snapshot: np.ndarray):
        """
        Compute this step's moves against the node position *snapshot*.

        Only writes ``moves`` and ``weights`` on this goal.
        """
        positions = self.gather(snapshot)
        self.weights = np.full(self.node_count, self.weight, dtype=np.float64)
        self.moves = np.asarray(self.compute(positions), dtype=np.float64).reshape(self.node_count, 3)

    def compute(self, positions: np.ndarray) -> np.ndarray:
        """
        Return a ``(node_count, 3)`` array of desired displacements for
        the goal's nodes at *positions* (same order as ``node_indices``).
        """
        raise NotImplementedError

    # -- Inspection -----------------------------------------------------------

    def get_output(self, snapshot: np.ndarray) -> Any:
        """Typed diagnostic value for the host, computed on demand."""
        return self.output(self.gather(snapshot))

    def output(self, positions: np.ndarray) -> Any:
        return None

    # -- Live changes ---------------------------------------------------------

    def change(self, weight: Optional[float] = None) -> "Goal":
        """Update parameters while the solver runs.  ``None`` keeps a value."""
        if weight is not None:
            self.weight = float(weight)
        return self

    # -- Serialisation --------------------------------------------------------

    def _params_dict(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        d = {"type": self.goal_type.name.lower(), "weight": self.weight}
        d.update(self._binding_dict())
        d.update(self._params_dict())
        return d

    def __repr__(self) -> str:
        return f"{type(self).__name__}(nodes={self.node_count}, weight={self.weight:g})"


# =========================================================================
# Geometry binder
# =========================================================================

class GeometryBinder(NodeBinding):
    """
    Read-side consumer of node positions.

    Binders register nodes exactly like goals but never take part in
    accumulation; the host calls :meth:`get_geometry` to draw or export
    the current shape.
    """

    binder_type: BinderType = BinderType.CUSTOM

    def get_geometry(self, snapshot: np.ndarray) -> Any:
        return self.geometry(self.gather(snapshot))

    def geometry(self, positions: np.ndarray) -> Any:
        raise NotImplementedError

    def to_dict(self) -> dict:
        d = {"type": self.binder_type.name.lower()}
        d.update(self._binding_dict())
        return d

    def __repr__(self) -> str:
        return f"{type(self).__name__}(nodes={self.node_count})"
