from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from careconnect.core.identity.models import Role


STAFF: FrozenSet[Role] = frozenset({Role.admin, Role.manager})
CARERS: FrozenSet[Role] = frozenset({Role.carer})

ROLE_HOMES: Dict[Role, str] = {
    Role.admin: "/admin",
    Role.manager: "/admin",
    Role.carer: "/carer",
}


def home_for(role: Role) -> str:
    return ROLE_HOMES[Role(role)]


def normalize_path(path: str) -> str:
    p = str(path or "/").split("?", 1)[0].split("#", 1)[0].strip() or "/"
    if not p.startswith("/"):
        p = "/" + p
    if len(p) > 1:
        p = p.rstrip("/") or "/"
    return p


@dataclass(frozen=True)
class Screen:
    path: str
    title: str
    # None = public (no session needed)
    roles: Optional[FrozenSet[Role]] = None
    partitions: Tuple[str, ...] = ()

    @property
    def public(self) -> bool:
        return self.roles is None

    def allows(self, role: Role) -> bool:
        return self.roles is None or role in self.roles


@dataclass
class RouteTable:
    screens: Dict[str, Screen] = field(default_factory=dict)
    aliases: Dict[str, str] = field(default_factory=dict)

    def add(self, screen: Screen) -> "RouteTable":
        path = normalize_path(screen.path)
        if path in self.screens:
            raise ValueError(f"duplicate screen path {path!r}")
        self.screens[path] = screen
        return self

    def alias(self, path: str, target: str) -> "RouteTable":
        self.aliases[normalize_path(path)] = normalize_path(target)
        return self

    def resolve(self, path: str) -> Optional[Screen]:
        p = normalize_path(path)
        p = self.aliases.get(p, p)
        return self.screens.get(p)

    def for_role(self, role: Role) -> List[Screen]:
        return [s for s in self.screens.values() if not s.public and s.allows(role)]

    def partitions_for(self, role: Role) -> Set[str]:
        return {p for s in self.for_role(role) for p in s.partitions}


def _staff(path: str, title: str, partitions: Iterable[str] = ()) -> Screen:
    return Screen(path=path, title=title, roles=STAFF, partitions=tuple(partitions))


def _carer(path: str, title: str, partitions: Iterable[str] = ()) -> Screen:
    return Screen(path=path, title=title, roles=CARERS, partitions=tuple(partitions))


def default_routes(login_path: str = "/login") -> RouteTable:
    t = RouteTable()
    t.add(Screen(path=login_path, title="Login"))
    t.alias("/", login_path)

    t.add(_staff("/admin", "Dashboard", ["clients", "carers", "schedules", "leave"]))
    t.add(_staff("/admin/clients", "Clients", ["clients"]))
    t.add(_staff("/admin/carers", "Carers", ["carers"]))
    t.add(_staff("/admin/schedules", "Schedules", ["schedules", "clients", "carers", "visit-notes", "timelogs"]))
    t.add(_staff("/admin/scheduling", "Scheduling", ["schedules", "clients", "carers"]))
    t.add(_staff("/admin/leave", "Leave Requests", ["leave"]))
    t.add(_staff("/admin/messages", "Messages", ["messages", "carers"]))

    t.add(_carer("/carer", "My Day", ["schedules"]))
    t.add(_carer("/carer/schedules", "My Schedules", ["schedules"]))
    t.add(_carer("/carer/visits", "Visits", ["schedules", "visit-notes", "timelogs"]))
    t.add(_carer("/carer/leave", "My Leave", ["leave"]))
    t.add(_carer("/carer/messages", "Messages", ["messages"]))
    t.add(_carer("/carer/profile", "Profile"))
    return t
