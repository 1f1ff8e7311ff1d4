"""
Vector3 — immutable 3-component vector.

The public value type for positions, directions and rays.  The solver's
inner loop works on ``numpy`` arrays; :meth:`Vector3.to_array` and
:meth:`Vector3.from_array` convert at the boundary.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator, Sequence, Tuple, Union

import numpy as np

from ..exceptions import DegenerateGeometryError


VectorLike = Union["Vector3", Sequence[float], np.ndarray]


@dataclass(frozen=True)
class Vector3:
    """A 3D vector value.  All arithmetic returns new instances."""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    # -- Construction ---------------------------------------------------------

    @classmethod
    def zero(cls) -> "Vector3":
        return cls(0.0, 0.0, 0.0)

    @classmethod
    def from_array(cls, a) -> "Vector3":
        return cls(float(a[0]), float(a[1]), float(a[2]))

    @classmethod
    def coerce(cls, value: VectorLike) -> "Vector3":
        """Accept a Vector3, a 3-tuple/list or a length-3 array."""
        if isinstance(value, Vector3):
            return value
        if len(value) != 3:
            raise ValueError(f"Expected 3 components, got {len(value)}")
        return cls.from_array(value)

    # -- Conversion -----------------------------------------------------------

    def to_array(self) -> np.ndarray:
        return np.array((self.x, self.y, self.z), dtype=np.float64)

    def to_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

    def __iter__(self) -> Iterator[float]:
        yield self.x
        yield self.y
        yield self.z

    # -- Arithmetic -----------------------------------------------------------

    def __add__(self, other: "Vector3") -> "Vector3":
        return Vector3(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: "Vector3") -> "Vector3":
        return Vector3(self.x - other.x, self.y - other.y, self.z - other.z)

    def __neg__(self) -> "Vector3":
        return Vector3(-self.x, -self.y, -self.z)

    def __mul__(self, s: float) -> "Vector3":
        return Vector3(self.x * s, self.y * s, self.z * s)

    __rmul__ = __mul__

    def __truediv__(self, s: float) -> "Vector3":
        return Vector3(self.x / s, self.y / s, self.z / s)

    def dot(self, other: "Vector3") -> float:
        return self.x * other.x + self.y * other.y + self.z * other.z

    def cross(self, other: "Vector3") -> "Vector3":
        return Vector3(
            self.y * other.z - self.z * other.y,
            self.z * other.x - self.x * other.z,
            self.x * other.y - self.y * other.x,
        )

    @property
    def length_squared(self) -> float:
        return self.dot(self)

    @property
    def length(self) -> float:
        return math.sqrt(self.length_squared)

    def normalized(self) -> "Vector3":
        """
        Unit vector in the same direction.

        Raises:
            DegenerateGeometryError: if the vector has zero length.
        """
        length = self.length
        if length == 0.0 or not math.isfinite(length):
            raise DegenerateGeometryError(
                "Cannot normalise a zero-length vector",
                context={"vector": self.to_tuple()},
            )
        return self / length

    def __repr__(self) -> str:
        return f"Vector3({self.x:g}, {self.y:g}, {self.z:g})"


def unit_array(value: VectorLike, what: str = "direction") -> np.ndarray:
    """
    Normalise an externally supplied direction into a float64 array.

    Raises:
        DegenerateGeometryError: for zero-length (or non-finite) input.
    """
    a = np.asarray(tuple(Vector3.coerce(value)), dtype=np.float64)
    length = float(np.linalg.norm(a))
    if length == 0.0 or not math.isfinite(length):
        raise DegenerateGeometryError(
            f"Cannot normalise a zero-length {what}",
            context={what: tuple(a.tolist())},
            suggestions=[f"Supply a non-zero {what}"],
        )
    return a / length
