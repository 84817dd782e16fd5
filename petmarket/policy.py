"""
Route authorization policy.

One table decides which endpoints need a verified bearer token. Handlers
never check tokens themselves; they depend on ``auth.authorize(route)``,
which resolves the level for ``route`` here.
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping


class AuthLevel(str, Enum):
    NONE = "none"
    # Anonymous requests proceed; a token, if sent, must still verify.
    OPTIONAL = "optional"
    REQUIRED = "required"


DEFAULT_ROUTE_AUTH: dict[str, AuthLevel] = {
    "list_listings": AuthLevel.NONE,
    "list_by_category": AuthLevel.NONE,
    "get_listing": AuthLevel.REQUIRED,
    "create_listing": AuthLevel.NONE,
    "update_listing": AuthLevel.NONE,
    "delete_listing": AuthLevel.NONE,
    "latest_listings": AuthLevel.NONE,
    "my_listings": AuthLevel.REQUIRED,
    "place_order": AuthLevel.NONE,
    "delete_order": AuthLevel.REQUIRED,
    "my_downloads": AuthLevel.REQUIRED,
    "search_listings": AuthLevel.NONE,
}


def auth_level_for(
    route: str, overrides: Mapping[str, AuthLevel] | None = None
) -> AuthLevel:
    """
    Return the auth level for ``route``, letting configured overrides win.

    Unknown routes are treated as protected.
    """
    if overrides and route in overrides:
        return AuthLevel(overrides[route])
    return DEFAULT_ROUTE_AUTH.get(route, AuthLevel.REQUIRED)
