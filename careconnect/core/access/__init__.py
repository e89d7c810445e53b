from careconnect.core.access.guard import AccessGuard, GuardDecision, GuardState, GuardedView
from careconnect.core.access.routes import ROLE_HOMES, RouteTable, Screen, default_routes, home_for, normalize_path

__all__ = [
    "AccessGuard",
    "GuardDecision",
    "GuardState",
    "GuardedView",
    "ROLE_HOMES",
    "RouteTable",
    "Screen",
    "default_routes",
    "home_for",
    "normalize_path",
]
