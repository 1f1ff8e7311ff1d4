"""
Goal library — concrete goals for the relaxation solver.

Every goal takes its starting positions first and a weight last, and
computes one displacement per node from the current positions only.

Supported goals
---------------
Anchor, Constant, Floor, Length, Merge, OnLine, OnPlane, OnCurve,
CoLinear, CoPlanar, CoCircular, CoSpherical, Direction, EqualLengths,
ParallelLines, ShapeMatching.

Goals that fit a primitive to the current positions (line, plane,
circle, sphere, shape) use ``scipy.linalg``.  When the current geometry
is degenerate for a fit (coincident nodes, too few points) the goal
reports zero moves for that step instead of raising; directions and
normals supplied by the caller are checked eagerly and raise
:class:`~formfind.exceptions.DegenerateGeometryError`.
"""

from __future__ import annotations

import math
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np
from scipy import linalg

from ..exceptions import ArityMismatchError, FormFindError
from .goal import Goal, GoalType, as_points, points_array
from .vector import Vector3, VectorLike, unit_array


def _zeros(n: int) -> np.ndarray:
    return np.zeros((n, 3), dtype=np.float64)


def _vec(a: np.ndarray) -> List[float]:
    return [float(a[0]), float(a[1]), float(a[2])]


def _segment_moves(positions: np.ndarray, target_lengths: np.ndarray) -> np.ndarray:
    """
    Symmetric moves that bring each segment (consecutive node pairs) to
    its target length.  Zero-length segments are left alone.
    """
    segs = positions.reshape(-1, 2, 3)
    d = segs[:, 1] - segs[:, 0]
    lengths = np.linalg.norm(d, axis=1)
    moves = np.zeros_like(segs)
    ok = lengths > 0.0
    half = 0.5 * (1.0 - target_lengths[ok] / lengths[ok])
    m = d[ok] * half[:, None]
    moves[ok, 0] = m
    moves[ok, 1] = -m
    return moves.reshape(-1, 3)


# =========================================================================
# Fixed targets
# =========================================================================

class AnchorGoal(Goal):
    """Keep a node at an anchor point.  High default weight so it sticks."""

    goal_type = GoalType.ANCHOR

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        anchor: Optional[VectorLike] = None,
        weight: float = 1000.0,
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, weight, node_count=1, node_indices=node_indices)
        self.check_arity()
        if anchor is None:
            if self.starting_positions is None:
                raise ValueError("AnchorGoal needs an anchor or a starting position")
            anchor = self.starting_positions[0]
        self.anchor = Vector3.coerce(anchor)

    def compute(self, positions):
        return self.anchor.to_array()[None, :] - positions

    def output(self, positions) -> float:
        return float(np.linalg.norm(self.anchor.to_array() - positions[0]))

    def change(self, anchor: Optional[VectorLike] = None, weight: Optional[float] = None):
        if anchor is not None:
            self.anchor = Vector3.coerce(anchor)
        return super().change(weight)

    def _params_dict(self):
        return {"anchor": list(self.anchor.to_tuple())}


class ConstantGoal(Goal):
    """Apply a constant offset to every node, e.g. gravity."""

    goal_type = GoalType.CONSTANT

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        constant: VectorLike = (0.0, 0.0, -0.1),
        weight: float = 1.0,
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, weight, node_indices=node_indices)
        self.constant = Vector3.coerce(constant)

    def compute(self, positions):
        return np.tile(self.constant.to_array(), (len(positions), 1))

    def output(self, positions) -> Vector3:
        return self.constant

    def change(self, constant: Optional[VectorLike] = None, weight: Optional[float] = None):
        if constant is not None:
            self.constant = Vector3.coerce(constant)
        return super().change(weight)

    def _params_dict(self):
        return {"constant": list(self.constant.to_tuple())}


class FloorGoal(Goal):
    """
    Keep nodes above a horizontal floor.

    Nodes already above the floor abstain (zero slot weight) so the floor
    does not hold them back.
    """

    goal_type = GoalType.FLOOR

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        floor_height: float = 0.0,
        weight: float = 1000.0,
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, weight, node_indices=node_indices)
        self.floor_height = float(floor_height)

    def compute(self, positions):
        moves = _zeros(len(positions))
        below = positions[:, 2] < self.floor_height
        moves[below, 2] = self.floor_height - positions[below, 2]
        self.weights[~below] = 0.0
        return moves

    def output(self, positions) -> int:
        return int(np.count_nonzero(positions[:, 2] < self.floor_height))

    def change(self, floor_height: Optional[float] = None, weight: Optional[float] = None):
        if floor_height is not None:
            self.floor_height = float(floor_height)
        return super().change(weight)

    def _params_dict(self):
        return {"floor_height": self.floor_height}


class OnLineGoal(Goal):
    """Project nodes onto a fixed infinite line."""

    goal_type = GoalType.ON_LINE

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        origin: VectorLike = (0.0, 0.0, 0.0),
        direction: VectorLike = (1.0, 0.0, 0.0),
        weight: float = 1.0,
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, weight, node_indices=node_indices)
        self.origin = Vector3.coerce(origin)
        self.direction = Vector3.from_array(unit_array(direction, "line direction"))

    def compute(self, positions):
        o = self.origin.to_array()
        d = self.direction.to_array()
        v = positions - o
        return o + np.outer(v @ d, d) - positions

    def output(self, positions) -> float:
        """Largest distance of any node from the line."""
        if len(positions) == 0:
            return 0.0
        return float(np.max(np.linalg.norm(self.compute(positions), axis=1)))

    def change(
        self,
        origin: Optional[VectorLike] = None,
        direction: Optional[VectorLike] = None,
        weight: Optional[float] = None,
    ):
        if origin is not None:
            self.origin = Vector3.coerce(origin)
        if direction is not None:
            self.direction = Vector3.from_array(unit_array(direction, "line direction"))
        return super().change(weight)

    def _params_dict(self):
        return {
            "origin": list(self.origin.to_tuple()),
            "direction": list(self.direction.to_tuple()),
        }


class OnPlaneGoal(Goal):
    """Project nodes onto a fixed plane."""

    goal_type = GoalType.ON_PLANE

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        origin: VectorLike = (0.0, 0.0, 0.0),
        normal: VectorLike = (0.0, 0.0, 1.0),
        weight: float = 1.0,
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, weight, node_indices=node_indices)
        self.origin = Vector3.coerce(origin)
        self.normal = Vector3.from_array(unit_array(normal, "plane normal"))

    def compute(self, positions):
        n = self.normal.to_array()
        return -np.outer((positions - self.origin.to_array()) @ n, n)

    def output(self, positions) -> List[float]:
        """Signed distance of each node from the plane."""
        n = self.normal.to_array()
        return ((positions - self.origin.to_array()) @ n).tolist()

    def change(
        self,
        origin: Optional[VectorLike] = None,
        normal: Optional[VectorLike] = None,
        weight: Optional[float] = None,
    ):
        if origin is not None:
            self.origin = Vector3.coerce(origin)
        if normal is not None:
            self.normal = Vector3.from_array(unit_array(normal, "plane normal"))
        return super().change(weight)

    def _params_dict(self):
        return {
            "origin": list(self.origin.to_tuple()),
            "normal": list(self.normal.to_tuple()),
        }


class OnCurveGoal(Goal):
    """
    Pull nodes onto a host curve.

    The curve is represented by a ``closest_point`` callable that maps a
    :class:`Vector3` to the nearest point on the curve.  It is called from
    worker threads and must not mutate shared state.
    """

    goal_type = GoalType.ON_CURVE

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        closest_point: Callable[[Vector3], VectorLike],
        weight: float = 1.0,
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, weight, node_indices=node_indices)
        self.closest_point = closest_point

    def compute(self, positions):
        targets = np.array(
            [tuple(Vector3.coerce(self.closest_point(Vector3.from_array(p)))) for p in positions],
            dtype=np.float64,
        ).reshape(-1, 3)
        return targets - positions

    def change(
        self,
        closest_point: Optional[Callable[[Vector3], VectorLike]] = None,
        weight: Optional[float] = None,
    ):
        if closest_point is not None:
            self.closest_point = closest_point
        return super().change(weight)

    def to_dict(self) -> dict:
        raise FormFindError(
            "OnCurveGoal wraps a host callable and cannot be serialised",
            context={"node_indices": self.node_indices},
            suggestions=["Remove or replace on-curve goals before saving"],
        )


# =========================================================================
# Node-relative targets
# =========================================================================

class LengthGoal(Goal):
    """Keep two nodes at a target distance (defaults to the starting one)."""

    goal_type = GoalType.LENGTH

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        target_length: Optional[float] = None,
        weight: float = 1.0,
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, weight, node_count=2, node_indices=node_indices)
        self.check_arity()
        if target_length is None:
            if self.starting_positions is None:
                raise ValueError("LengthGoal needs a target length or starting positions")
            a, b = self.starting_positions
            target_length = (b - a).length
        self.target_length = self._checked_length(target_length)

    @staticmethod
    def _checked_length(value: float) -> float:
        value = float(value)
        if value < 0.0:
            raise ValueError(f"target_length must be non-negative, got {value}")
        return value

    def compute(self, positions):
        return _segment_moves(positions, np.array([self.target_length]))

    def output(self, positions) -> float:
        return float(np.linalg.norm(positions[1] - positions[0]))

    def change(self, target_length: Optional[float] = None, weight: Optional[float] = None):
        if target_length is not None:
            self.target_length = self._checked_length(target_length)
        return super().change(weight)

    def _params_dict(self):
        return {"target_length": self.target_length}


class MergeGoal(Goal):
    """Pull all nodes to their common centroid."""

    goal_type = GoalType.MERGE

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        weight: float = 1000.0,
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, weight, node_indices=node_indices)

    def compute(self, positions):
        if len(positions) == 0:
            return _zeros(0)
        return positions.mean(axis=0) - positions

    def output(self, positions) -> Vector3:
        return Vector3.from_array(positions.mean(axis=0))


class DirectionGoal(Goal):
    """
    Align a two-node segment with a direction, rotating about its midpoint.

    The segment is replaced by its projection onto the direction, so a
    segment already parallel to it is left unchanged.
    """

    goal_type = GoalType.DIRECTION

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        target_direction: Optional[VectorLike] = None,
        weight: float = 1.0,
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, weight, node_count=2, node_indices=node_indices)
        self.check_arity()
        if target_direction is None:
            if self.starting_positions is None:
                raise ValueError("DirectionGoal needs a direction or starting positions")
            a, b = self.starting_positions
            target_direction = b - a
        self.target_direction = Vector3.from_array(unit_array(target_direction, "target direction"))

    def compute(self, positions):
        d = self.target_direction.to_array()
        v = positions[1] - positions[0]
        mid = 0.5 * (positions[0] + positions[1])
        half = 0.5 * float(v @ d) * d
        return np.array([mid - half, mid + half]) - positions

    def output(self, positions) -> float:
        """Angle in degrees between the segment and the target direction."""
        v = positions[1] - positions[0]
        length = float(np.linalg.norm(v))
        if length == 0.0:
            return 0.0
        c = float(v @ self.target_direction.to_array()) / length
        return math.degrees(math.acos(max(-1.0, min(1.0, c))))

    def change(self, target_direction: Optional[VectorLike] = None, weight: Optional[float] = None):
        if target_direction is not None:
            self.target_direction = Vector3.from_array(unit_array(target_direction, "target direction"))
        return super().change(weight)

    def _params_dict(self):
        return {"target_direction": list(self.target_direction.to_tuple())}


class _SegmentsGoal(Goal):
    """Goals over a list of segments given as consecutive position pairs."""

    def __init__(self, starting_positions, weight, node_indices):
        super().__init__(starting_positions, weight, node_indices=node_indices)
        if self.node_count % 2:
            raise ArityMismatchError(
                f"{type(self).__name__} needs an even number of nodes (pairs of segment ends)",
                context={"node_count": self.node_count},
            )


class EqualLengthsGoal(_SegmentsGoal):
    """Segments converge to their mean length."""

    goal_type = GoalType.EQUAL_LENGTHS

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        weight: float = 1.0,
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, weight, node_indices)

    def _lengths(self, positions) -> np.ndarray:
        segs = positions.reshape(-1, 2, 3)
        return np.linalg.norm(segs[:, 1] - segs[:, 0], axis=1)

    def compute(self, positions):
        if len(positions) == 0:
            return _zeros(0)
        lengths = self._lengths(positions)
        target = np.full(len(lengths), lengths.mean())
        return _segment_moves(positions, target)

    def output(self, positions) -> List[float]:
        return self._lengths(positions).tolist()


class ParallelLinesGoal(_SegmentsGoal):
    """Segments rotate about their midpoints toward their mean direction."""

    goal_type = GoalType.PARALLEL_LINES

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        weight: float = 1.0,
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, weight, node_indices)

    def compute(self, positions):
        segs = positions.reshape(-1, 2, 3)
        d = segs[:, 1] - segs[:, 0]
        lengths = np.linalg.norm(d, axis=1)
        ok = lengths > 0.0
        if not np.any(ok):
            return _zeros(len(positions))

        units = np.zeros_like(d)
        units[ok] = d[ok] / lengths[ok, None]
        # Orient every segment like the first valid one
        ref = units[np.argmax(ok)]
        signs = np.where(units @ ref < 0.0, -1.0, 1.0)
        mean = (units * signs[:, None]).sum(axis=0)
        norm = float(np.linalg.norm(mean))
        if norm == 0.0:
            return _zeros(len(positions))
        mean /= norm

        mids = 0.5 * (segs[:, 0] + segs[:, 1])
        half = (0.5 * lengths * signs)[:, None] * mean
        targets = np.stack([mids - half, mids + half], axis=1)
        moves = targets - segs
        moves[~ok] = 0.0
        return moves.reshape(-1, 3)


# =========================================================================
# Best-fit targets
# =========================================================================

def _principal_axes(positions: np.ndarray):
    """Centroid, singular values and right singular vectors of the cloud."""
    c = positions.mean(axis=0)
    _, s, vt = linalg.svd(positions - c, full_matrices=False)
    return c, s, vt


class CoLinearGoal(Goal):
    """Pull nodes onto their best-fit line."""

    goal_type = GoalType.CO_LINEAR

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        weight: float = 1000.0,
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, weight, node_indices=node_indices)

    def compute(self, positions):
        if len(positions) < 3:
            return _zeros(len(positions))
        c, s, vt = _principal_axes(positions)
        if s[0] == 0.0:
            return _zeros(len(positions))
        d = vt[0]
        v = positions - c
        return c + np.outer(v @ d, d) - positions


class CoPlanarGoal(Goal):
    """Pull nodes onto their best-fit plane."""

    goal_type = GoalType.CO_PLANAR

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        weight: float = 1.0,
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, weight, node_indices=node_indices)

    def compute(self, positions):
        if len(positions) < 4:
            return _zeros(len(positions))
        c, _, vt = _principal_axes(positions)
        n = vt[2]
        return -np.outer((positions - c) @ n, n)


class CoSphericalGoal(Goal):
    """Pull nodes onto their least-squares sphere."""

    goal_type = GoalType.CO_SPHERICAL

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        weight: float = 1.0,
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, weight, node_indices=node_indices)

    @staticmethod
    def fit(positions: np.ndarray):
        """Return ``(center, radius)`` or ``None`` when the points are degenerate."""
        if len(positions) < 4:
            return None
        a = np.hstack([2.0 * positions, np.ones((len(positions), 1))])
        b = np.einsum("ij,ij->i", positions, positions)
        sol, _, rank, _ = linalg.lstsq(a, b)
        if rank < 4:
            return None
        center = sol[:3]
        r2 = sol[3] + float(center @ center)
        return center, math.sqrt(max(r2, 0.0))

    def compute(self, positions):
        fitted = self.fit(positions)
        if fitted is None:
            return _zeros(len(positions))
        center, radius = fitted
        v = positions - center
        dist = np.linalg.norm(v, axis=1)
        moves = _zeros(len(positions))
        ok = dist > 0.0
        moves[ok] = center + v[ok] * (radius / dist[ok])[:, None] - positions[ok]
        return moves

    def output(self, positions) -> Optional[Dict[str, Any]]:
        fitted = self.fit(positions)
        if fitted is None:
            return None
        return {"center": Vector3.from_array(fitted[0]), "radius": fitted[1]}


class CoCircularGoal(Goal):
    """Pull nodes onto their best-fit circle (best-fit plane, then circle)."""

    goal_type = GoalType.CO_CIRCULAR

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        weight: float = 1.0,
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, weight, node_indices=node_indices)

    @staticmethod
    def fit(positions: np.ndarray):
        """Return ``(center, u, w, radius)`` in 3D or ``None`` if degenerate."""
        if len(positions) < 3:
            return None
        c, s, vt = _principal_axes(positions)
        if len(s) < 2 or s[1] == 0.0:
            return None
        u, w = vt[0], vt[1]
        rel = positions - c
        xy = np.stack([rel @ u, rel @ w], axis=1)
        a = np.hstack([2.0 * xy, np.ones((len(xy), 1))])
        b = np.einsum("ij,ij->i", xy, xy)
        sol, _, rank, _ = linalg.lstsq(a, b)
        if rank < 3:
            return None
        r2 = sol[2] + sol[0] * sol[0] + sol[1] * sol[1]
        center = c + sol[0] * u + sol[1] * w
        return center, u, w, math.sqrt(max(r2, 0.0))

    def compute(self, positions):
        fitted = self.fit(positions)
        if fitted is None:
            return _zeros(len(positions))
        center, u, w, radius = fitted
        rel = positions - center
        in_plane = np.outer(rel @ u, u) + np.outer(rel @ w, w)
        dist = np.linalg.norm(in_plane, axis=1)
        moves = _zeros(len(positions))
        ok = dist > 0.0
        moves[ok] = center + in_plane[ok] * (radius / dist[ok])[:, None] - positions[ok]
        return moves

    def output(self, positions) -> Optional[Dict[str, Any]]:
        fitted = self.fit(positions)
        if fitted is None:
            return None
        center, u, w, radius = fitted
        return {
            "center": Vector3.from_array(center),
            "normal": Vector3.from_array(np.cross(u, w)),
            "radius": radius,
        }


class ShapeMatchingGoal(Goal):
    """
    Pull nodes toward the best rigid (or similarity, with
    ``allow_scaling``) placement of a target shape.

    The target shape defaults to the starting positions, so the goal
    keeps a group of nodes in its initial shape while letting it move
    and rotate freely.
    """

    goal_type = GoalType.SHAPE_MATCHING

    def __init__(
        self,
        starting_positions: Optional[Sequence[VectorLike]],
        target_shape: Optional[Sequence[VectorLike]] = None,
        allow_scaling: bool = False,
        weight: float = 1.0,
        node_indices: Optional[Sequence[int]] = None,
    ):
        super().__init__(starting_positions, weight, node_indices=node_indices)
        self.allow_scaling = bool(allow_scaling)
        if target_shape is None:
            if self.starting_positions is None:
                raise ValueError("ShapeMatchingGoal needs a target shape or starting positions")
            target_shape = self.starting_positions
        self.set_target_shape(target_shape)

    def set_target_shape(self, points: Sequence[VectorLike]):
        pts = as_points(points)
        if len(pts) != self.node_count:
            raise ArityMismatchError(
                "Target shape must have one point per node",
                context={"node_count": self.node_count, "target_points": len(pts)},
            )
        self.target_shape: List[Vector3] = pts
        shape = points_array(pts)
        self._target_centered = shape - shape.mean(axis=0) if len(pts) else shape

    def fitted_shape(self, positions: np.ndarray) -> np.ndarray:
        """Target shape placed onto *positions* (Kabsch / Umeyama)."""
        if len(positions) == 0:
            return _zeros(0)
        q = self._target_centered
        pc = positions.mean(axis=0)
        p = positions - pc

        u, s, vt = linalg.svd(q.T @ p)
        d = np.ones(3)
        if linalg.det(vt.T @ u.T) < 0.0:
            d[2] = -1.0
        rotation = vt.T @ np.diag(d) @ u.T

        scale = 1.0
        if self.allow_scaling:
            q_var = float(np.sum(q * q))
            if q_var > 0.0:
                scale = float(s @ d) / q_var
        return pc + scale * (q @ rotation.T)

    def compute(self, positions):
        return self.fitted_shape(positions) - positions

    def output(self, positions) -> List[Vector3]:
        return [Vector3.from_array(p) for p in self.fitted_shape(positions)]

    def change(
        self,
        target_shape: Optional[Sequence[VectorLike]] = None,
        allow_scaling: Optional[bool] = None,
        weight: Optional[float] = None,
    ):
        if target_shape is not None:
            self.set_target_shape(target_shape)
        if allow_scaling is not None:
            self.allow_scaling = bool(allow_scaling)
        return super().change(weight)

    def _params_dict(self):
        return {
            "target_shape": [list(p.to_tuple()) for p in self.target_shape],
            "allow_scaling": self.allow_scaling,
        }


# =========================================================================
# Deserialization registry
# =========================================================================

_GOAL_CLASSES = {
    cls.goal_type.name.lower(): cls
    for cls in (
        AnchorGoal,
        ConstantGoal,
        FloorGoal,
        LengthGoal,
        MergeGoal,
        OnLineGoal,
        OnPlaneGoal,
        CoLinearGoal,
        CoPlanarGoal,
        CoCircularGoal,
        CoSphericalGoal,
        DirectionGoal,
        EqualLengthsGoal,
        ParallelLinesGoal,
        ShapeMatchingGoal,
    )
}


def goal_from_dict(d: dict) -> Goal:
    """Deserialize any built-in goal from a dict produced by ``to_dict``."""
    goal_type = d.get("type")
    cls = _GOAL_CLASSES.get(goal_type)
    if cls is None:
        raise ValueError(f"Unknown goal type: {goal_type}")
    params = {
        k: v for k, v in d.items()
        if k not in ("type", "node_count", "node_indices", "starting_positions")
    }
    return cls(
        d.get("starting_positions"),
        node_indices=d.get("node_indices"),
        **params,
    )
