from .vector import Vector3
from .node import Node
from .goal import Goal, GoalType, GeometryBinder, BinderType
from .goals import (
    AnchorGoal,
    ConstantGoal,
    FloorGoal,
    LengthGoal,
    MergeGoal,
    OnLineGoal,
    OnPlaneGoal,
    OnCurveGoal,
    CoLinearGoal,
    CoPlanarGoal,
    CoCircularGoal,
    CoSphericalGoal,
    DirectionGoal,
    EqualLengthsGoal,
    ParallelLinesGoal,
    ShapeMatchingGoal,
    goal_from_dict,
)
from .binders import PointBinder, LineBinder, PolylineBinder, binder_from_dict
from .picking import NO_HIT, Ray, CameraBasis
from .solver import Solver
