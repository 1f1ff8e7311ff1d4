"""
Solver settings.

Defaults match the interactive behaviour of the solver: nodes closer
than 0.001 units are merged on registration, a dragged node votes with
weight 30, overshooting velocity is damped by 0.9 and the pick cone is
0.03 (squared projected distance 0.0009).

Settings can be loaded from the ``[solver]`` table of a TOML file::

    [solver]
    merge_threshold = 0.01
    interaction_weight = 50.0
    parallel = false
"""

from __future__ import annotations

import tomllib
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .exceptions import ConfigError


@dataclass
class SolverSettings:
    """
    Tunables for :class:`~formfind.kernel.solver.Solver`.

    Attributes:
        merge_threshold: Positions closer than this bind to the same node.
        interaction_weight: Weight of the synthetic pointer-drag vote.
        damping: Velocity factor applied when momentum opposes the move.
        pick_range: Angular (screen-space) radius of the nearest-node query.
        momentum: Default for ``step(momentum=...)`` when not given.
        parallel: Evaluate goals on a thread pool.
        max_workers: Pool size (``None`` lets the executor decide).
        parallel_min_goals: Below this goal count evaluation stays serial.
    """

    merge_threshold: float = 0.001
    interaction_weight: float = 30.0
    damping: float = 0.9
    pick_range: float = 0.03
    momentum: bool = True
    parallel: bool = True
    max_workers: Optional[int] = None
    parallel_min_goals: int = 16

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Raise :class:`ConfigError` if any value is out of range."""
        if self.merge_threshold < 0.0:
            raise ConfigError(
                "merge_threshold must be non-negative",
                context={"merge_threshold": self.merge_threshold},
            )
        if self.interaction_weight <= 0.0:
            raise ConfigError(
                "interaction_weight must be positive",
                context={"interaction_weight": self.interaction_weight},
            )
        if not 0.0 < self.damping <= 1.0:
            raise ConfigError(
                "damping must lie in (0, 1]",
                context={"damping": self.damping},
            )
        if self.pick_range <= 0.0:
            raise ConfigError(
                "pick_range must be positive",
                context={"pick_range": self.pick_range},
            )
        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigError(
                "max_workers must be at least 1",
                context={"max_workers": self.max_workers},
            )
        if self.parallel_min_goals < 0:
            raise ConfigError(
                "parallel_min_goals must be non-negative",
                context={"parallel_min_goals": self.parallel_min_goals},
            )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SolverSettings":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(d) - known)
        if unknown:
            raise ConfigError(
                f"Unknown solver setting(s): {', '.join(unknown)}",
                context={"known": ", ".join(sorted(known))},
            )
        return cls(**d)


def load_settings(path: Union[str, Path]) -> SolverSettings:
    """
    Load settings from the ``[solver]`` table of a TOML file.

    Missing tables or keys fall back to the defaults.
    """
    path = Path(path)
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(
            "Settings file not found",
            context={"path": str(path)},
        ) from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(
            f"Invalid TOML: {exc}",
            context={"path": str(path)},
        ) from exc

    table = data.get("solver", {})
    if not isinstance(table, dict):
        raise ConfigError(
            "[solver] must be a table",
            context={"path": str(path)},
        )
    return SolverSettings.from_dict(table)
