"""
Geometry binders — derived geometry read back from node positions.

Binders share the goal registration contract, so their points merge
with goal nodes, but they never vote on node movement.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

import numpy as np

from .goal import BinderType, GeometryBinder
from .vector import Vector3, VectorLike


class PointBinder(GeometryBinder):
    """One point per bound node."""

    binder_type = BinderType.POINT

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, node_indices=node_indices)

    def geometry(self, positions: np.ndarray) -> List[Vector3]:
        return [Vector3.from_array(p) for p in positions]


class LineBinder(GeometryBinder):
    """A single line segment between two nodes."""

    binder_type = BinderType.LINE

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, node_count=2, node_indices=node_indices)
        self.check_arity()

    def geometry(self, positions: np.ndarray) -> Tuple[Vector3, Vector3]:
        return Vector3.from_array(positions[0]), Vector3.from_array(positions[1])


class PolylineBinder(GeometryBinder):
    """
    An open or closed polyline through the bound nodes in order.

    A closed polyline repeats its first vertex at the end.
    """

    binder_type = BinderType.POLYLINE

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        closed: bool = False,
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, node_indices=node_indices)
        self.closed = bool(closed)

    def geometry(self, positions: np.ndarray) -> List[Vector3]:
        points = [Vector3.from_array(p) for p in positions]
        if self.closed and points:
            points.append(points[0])
        return points

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["closed"] = self.closed
        return d


_BINDER_CLASSES = {
    cls.binder_type.name.lower(): cls
    for cls in (PointBinder, LineBinder, PolylineBinder)
}


def binder_from_dict(d: dict) -> GeometryBinder:
    """Deserialize any built-in binder from a dict produced by ``to_dict``."""
    binder_type = d.get("type")
    cls = _BINDER_CLASSES.get(binder_type)
    if cls is None:
        raise ValueError(f"Unknown binder type: {binder_type}")
    kwargs = {}
    if "closed" in d:
        kwargs["closed"] = d["closed"]
    return cls(d.get("starting_positions"), node_indices=d.get("node_indices"), **kwargs)
