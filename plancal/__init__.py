"""This is the init module for plancal"""

from .core import Plancal
from .errors import NotAuthenticatedError, PlancalError, PlannerDecodeError, TransportError
from .planner import Workout
from .state import CalendarState, MoveOutcome, Role

__version__ = "0.0.1"
__all__ = [
    "CalendarState",
    "MoveOutcome",
    "NotAuthenticatedError",
    "Plancal",
    "PlancalError",
    "PlannerDecodeError",
    "Role",
    "TransportError",
    "Workout",
]
