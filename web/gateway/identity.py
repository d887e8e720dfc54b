"""Trusted identity supplied by the upstream identity provider.

Credentials are verified before requests reach this service: the edge
gateway forwards the verified user id and role as ``X-User-Id`` and
``X-User-Role``. This module turns those headers into a DRF ``request.user``
and provides the permission classes the views use. No credential checks
happen here.
"""

import uuid
from dataclasses import dataclass

from rest_framework.authentication import BaseAuthentication
from rest_framework.permissions import BasePermission

from .middleware import ACTOR_CTX

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Identity:
    """Verified caller identity.

    Attributes:
        user_id: Identity provider user id (UUID).
        role: Role claim, ``"admin"`` or ``"user"``.
        username: Optional display name used in audit entries.
    """

    user_id: uuid.UUID
    role: str = "user"
    username: str = ""

    is_authenticated = True

    @property
    def pk(self) -> uuid.UUID:
        return self.user_id

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    @property
    def audit_name(self) -> str:
        """Name recorded in status history and notes."""
        who = self.username or str(self.user_id)
        return f"{who} (Admin)" if self.is_admin else who


class TrustedHeaderAuthentication(BaseAuthentication):
    """Build an ``Identity`` from the gateway's identity headers.

    Requests without ``X-User-Id`` stay anonymous. A malformed id is treated
    the same way; the edge gateway never forwards one.
    """

    USER_HEADER = "HTTP_X_USER_ID"
    ROLE_HEADER = "HTTP_X_USER_ROLE"
    NAME_HEADER = "HTTP_X_USER_NAME"

    def authenticate(self, request):
        raw = request.META.get(self.USER_HEADER)
        if not raw:
            return None
        try:
            user_id = uuid.UUID(raw)
        except ValueError:
            return None
        identity = Identity(
            user_id=user_id,
            role=(request.META.get(self.ROLE_HEADER) or "user").lower(),
            username=request.META.get(self.NAME_HEADER, ""),
        )
        ACTOR_CTX.set(str(user_id))
        return identity, None


class IsAuthenticatedIdentity(BasePermission):
    def has_permission(self, request, view):
        return isinstance(request.user, Identity)


class IsAdminIdentity(BasePermission):
    def has_permission(self, request, view):
        return isinstance(request.user, Identity) and request.user.is_admin
