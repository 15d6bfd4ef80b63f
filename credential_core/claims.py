"""
Authorization claims embedded in access tokens.

Organization and project memberships belong to another part of the system.
The token layer only sees them through the ``ClaimsProvider`` interface.
"""
from typing import Dict, List, Mapping, Optional, Protocol


Claims = Dict[str, List[Dict[str, str]]]


def empty_claims() -> Claims:
    """Claims for a user without memberships."""
    return {"organizations": [], "projects": []}


class ClaimsProvider(Protocol):
    """Source of a user's organization and project role lists."""

    def for_user(self, user_id: str) -> Claims:
        """
        Get the authorization claims of a user.

        Args:
            user_id: ID of the user.

        Returns:
            Dictionary with ``organizations`` and ``projects`` lists.
        """
        ...


class StaticClaimsProvider:
    """Claims provider backed by a fixed mapping, empty for unknown users."""

    def __init__(self, claims: Optional[Mapping[str, Claims]] = None):
        self._claims = dict(claims or {})

    def for_user(self, user_id: str) -> Claims:
        claims = self._claims.get(user_id)
        if claims is None:
            return empty_claims()
        return {
            "organizations": list(claims.get("organizations", [])),
            "projects": list(claims.get("projects", [])),
        }


default_claims_provider = StaticClaimsProvider()
