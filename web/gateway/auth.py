"""Caller identity from the trusted headers set by the authentication service.

The edge authentication service validates user credentials and forwards
the resolved identity in ``X-Actor-Id``, ``X-Actor-Role`` and
``X-Actor-Stores``. This service never sees passwords or tokens.
"""

import uuid

from rest_framework.authentication import BaseAuthentication
from rest_framework.exceptions import AuthenticationFailed
from rest_framework.permissions import BasePermission

from apps.common.actors import Actor, Role


class HeaderActorAuthentication(BaseAuthentication):
    def authenticate(self, request):
        raw_id = request.headers.get("X-Actor-Id")
        if not raw_id:
            return None
        try:
            actor_id = uuid.UUID(raw_id.strip())
        except ValueError:
            raise AuthenticationFailed("X-Actor-Id must be a UUID") from None

        try:
            role = Role((request.headers.get("X-Actor-Role") or Role.CUSTOMER.value).strip().lower())
        except ValueError:
            raise AuthenticationFailed("Unknown X-Actor-Role") from None

        try:
            stores = frozenset(
                uuid.UUID(s.strip()) for s in (request.headers.get("X-Actor-Stores") or "").split(",") if s.strip()
            )
        except ValueError:
            raise AuthenticationFailed("X-Actor-Stores must be comma-separated UUIDs") from None

        return Actor(id=actor_id, role=role, store_ids=stores), None

    def authenticate_header(self, request):
        # A non-empty value makes DRF answer 401 instead of 403.
        return "X-Actor-Id"


class IsOperator(BasePermission):
    def has_permission(self, request, view):
        return bool(request.user and getattr(request.user, "is_operator", False))
