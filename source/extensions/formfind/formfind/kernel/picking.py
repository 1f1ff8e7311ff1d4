"""
Pointer picking and drag math.

Coordinate handling notes
-------------------------
* The nearest-node query is a *screen-space* test.  Both the pointer ray
  direction and every node (relative to the ray origin) are expressed in
  the camera basis (right, up, forward) and divided by their own forward
  component, which puts them on the image plane at unit distance.  The
  squared 2D distance there approximates the squared view angle between
  the pointer and the node.
* Nodes at or behind the camera plane (forward component <= 0) are never
  picked.
* Ties go to the lowest node index.
* The drag displacement moves a node onto the closest point of the
  pointer ray's infinite line.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .vector import Vector3, VectorLike, unit_array


NO_HIT = -1
"""Sentinel node index returned when nothing is under the pointer."""


@dataclass(frozen=True)
class Ray:
    """Pointer ray in world space.  ``direction`` need not be unit length."""
    origin: Vector3
    direction: Vector3

    @classmethod
    def of(cls, origin: VectorLike, direction: VectorLike) -> "Ray":
        return cls(Vector3.coerce(origin), Vector3.coerce(direction))


@dataclass(frozen=True)
class CameraBasis:
    """
    Camera orientation as supplied by the viewport.

    ``look_direction`` points into the scene; ``up_direction`` is the
    screen-up vector.  Neither needs to be unit length.
    """
    look_direction: Vector3
    up_direction: Vector3

    @classmethod
    def of(cls, look_direction: VectorLike, up_direction: VectorLike) -> "CameraBasis":
        return cls(Vector3.coerce(look_direction), Vector3.coerce(up_direction))

    @classmethod
    def from_y_up(cls, look_direction: VectorLike, up_direction: VectorLike) -> "CameraBasis":
        """Build a Z-up basis from a Y-up viewer's camera vectors."""
        look = Vector3.coerce(look_direction)
        up = Vector3.coerce(up_direction)
        return cls(Vector3(look.x, -look.z, look.y), Vector3(up.x, -up.z, up.y))

    def axes(self) -> np.ndarray:
        """
        Rows ``(right, up, forward)`` as a ``(3, 3)`` array.

        Raises:
            DegenerateGeometryError: for a zero look/up vector or when
                they are parallel.
        """
        forward = unit_array(self.look_direction, "camera look direction")
        up = unit_array(self.up_direction, "camera up direction")
        right = unit_array(np.cross(up, forward), "camera right direction")
        return np.stack([right, up, forward])


def find_nearest_node_index(
    positions: np.ndarray,
    ray: Ray,
    camera: CameraBasis,
    pick_range: float,
) -> int:
    """
    Index of the node closest to the pointer in screen space.

    Args:
        positions: ``(n, 3)`` node positions.
        ray: Current pointer ray.
        camera: Camera basis used for the projection.
        pick_range: A node is only a hit when its squared projected
            distance is below ``pick_range ** 2``.

    Returns:
        The node index, or :data:`NO_HIT`.
    """
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    if len(positions) == 0:
        return NO_HIT

    basis = camera.axes()
    pointer = basis @ ray.direction.to_array()
    if pointer[2] <= 0.0:
        return NO_HIT
    pointer_2d = pointer / pointer[2]

    v = (positions - ray.origin.to_array()) @ basis.T
    depth = v[:, 2]
    in_front = depth > 0.0

    dist_sq = np.full(len(positions), np.inf)
    projected = v[in_front] / depth[in_front, None]
    dist_sq[in_front] = np.sum((projected - pointer_2d) ** 2, axis=1)

    nearest = int(np.argmin(dist_sq))
    if dist_sq[nearest] < pick_range * pick_range:
        return nearest
    return NO_HIT


def drag_move(position: np.ndarray, ray: Ray) -> np.ndarray:
    """
    Displacement taking *position* onto the closest point of *ray*'s line.

    Raises:
        DegenerateGeometryError: if the ray direction has zero length.
    """
    direction = unit_array(ray.direction, "pointer ray direction")
    v = np.asarray(position, dtype=np.float64) - ray.origin.to_array()
    return float(v @ direction) * direction - v

