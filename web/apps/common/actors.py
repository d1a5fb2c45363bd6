"""Caller identity as seen by the workflow.

Users live in the authentication service; this service only receives the
resolved identity (id, role and the stores a vendor manages) and uses it for
ownership checks.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    OPERATOR = "operator"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller.

    ``is_authenticated`` and ``pk`` let DRF treat the actor as ``request.user``
    for permission checks and throttling.
    """

    id: uuid.UUID
    role: Role = Role.CUSTOMER
    store_ids: frozenset = field(default_factory=frozenset)

    is_authenticated = True

    @property
    def pk(self):
        return self.id

    @property
    def is_operator(self) -> bool:
        return self.role == Role.OPERATOR

    def manages_store(self, store_id) -> bool:
        return self.role == Role.VENDOR and store_id is not None and store_id in self.store_ids

    def can_view_order(self, customer_id, store_id) -> bool:
        return self.is_operator or self.id == customer_id or self.manages_store(store_id)

    def can_fulfil_order(self, store_id) -> bool:
        return self.is_operator or self.manages_store(store_id)
