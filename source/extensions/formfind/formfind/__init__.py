"""
formfind — interactive goal-based geometric relaxation.

Nodes are nudged each step toward positions that jointly satisfy a set
of goals; each goal votes a displacement for its nodes and the solver
moves every node by the weighted average of its votes.
"""

__version__ = "0.1.0"

from .config import SolverSettings, load_settings
from .exceptions import (
    ArityMismatchError,
    ConfigError,
    DegenerateGeometryError,
    FormFindError,
)
from .logging_config import setup_logging
from .kernel import Goal, GeometryBinder, Node, Ray, CameraBasis, Solver, Vector3, NO_HIT
from .api import FormFindAPI
