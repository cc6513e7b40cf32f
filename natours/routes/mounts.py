"""Sub-router mount table."""

from __future__ import annotations

from typing import Mapping

from natours.routes.router import SubRouter

# Mount order matters: the first router with a matching route owns the request.
MOUNT_PREFIXES: dict[str, str] = {
    "views": "/",
    "tours": "/api/v1/tours",
    "users": "/api/v1/users",
    "reviews": "/api/v1/reviews",
    "bookings": "/api/v1/bookings",
}


def build_mounts(routers: Mapping[str, SubRouter] | None = None) -> list[tuple[str, SubRouter]]:
    """Return ``(prefix, router)`` pairs in mount order.

    Collaborators supply routers by name; missing ones mount as empty routers.
    """
    routers = dict(routers or {})
    unknown = set(routers) - set(MOUNT_PREFIXES)
    if unknown:
        raise ValueError(f"Unknown router names: {sorted(unknown)}. Valid: {list(MOUNT_PREFIXES)}")
    return [(prefix, routers.get(name) or SubRouter(name)) for name, prefix in MOUNT_PREFIXES.items()]
