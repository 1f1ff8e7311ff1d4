"""
Node — a point mass owned by the solver.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .vector import Vector3


@dataclass
class Node:
    """
    A point mass with a current position and accumulated velocity.

    ``starting_position`` is the snapshot taken at creation and is what
    :meth:`reset` returns to.
    """
    position: Vector3
    velocity: Vector3 = field(default_factory=Vector3.zero)
    starting_position: Vector3 = field(default=None)  # type: ignore[assignment]

    def __post_init__(self):
        if self.starting_position is None:
            self.starting_position = self.position

    def reset(self):
        self.position = self.starting_position
        self.velocity = Vector3.zero()

    def to_dict(self) -> dict:
        return {
            "position": list(self.position.to_tuple()),
            "velocity": list(self.velocity.to_tuple()),
            "starting_position": list(self.starting_position.to_tuple()),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Node":
        position = Vector3.coerce(d["position"])
        return cls(
            position=position,
            velocity=Vector3.coerce(d.get("velocity", (0.0, 0.0, 0.0))),
            starting_position=Vector3.coerce(d.get("starting_position", position)),
        )
