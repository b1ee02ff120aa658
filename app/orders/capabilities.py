"""
Capability table for settlement operations.

Every order, escrow and dispute operation checks the actor against one
central {Buyer, Seller, Admin} x {action} table instead of re-deriving
role rules per endpoint.

Roles are relative to a subject (an Order or a Dispute): a user is the
BUYER of an order they placed, the SELLER of an order placed with a store
they own, and ADMIN if they are staff. One user may hold several roles.

Usage:
    from orders.capabilities import Action, require

    require(request.user, order, Action.CONFIRM_RECEIPT)  # raises if not allowed

    if can(user, order, Action.CANCEL_DISPATCHED_ORDER):
        ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import models

from orders.exceptions import UnauthorizedActionError

if TYPE_CHECKING:
    from typing import Any


class Role(models.TextChoices):
    BUYER = "buyer", "Buyer"
    SELLER = "seller", "Seller"
    ADMIN = "admin", "Admin"


class Action(models.TextChoices):
    VIEW_ORDER = "view_order", "View order"
    CONFIRM_ORDER = "confirm_order", "Confirm order"
    ADVANCE_DELIVERY = "advance_delivery", "Advance delivery"
    CONFIRM_RECEIPT = "confirm_receipt", "Confirm receipt"
    CANCEL_ORDER = "cancel_order", "Cancel order"
    CANCEL_DISPATCHED_ORDER = "cancel_dispatched_order", "Cancel shipped order"
    VIEW_ESCROW = "view_escrow", "View escrow"
    MANAGE_ESCROW = "manage_escrow", "Manage escrow"
    OPEN_DISPUTE = "open_dispute", "Open dispute"
    VIEW_DISPUTE = "view_dispute", "View dispute"
    CANCEL_DISPUTE = "cancel_dispute", "Cancel dispute"
    RESOLVE_DISPUTE = "resolve_dispute", "Resolve dispute"


CAPABILITIES: dict[str, frozenset[str]] = {
    Role.BUYER: frozenset(
        [
            Action.VIEW_ORDER,
            Action.CONFIRM_RECEIPT,
            Action.CANCEL_ORDER,
            Action.VIEW_ESCROW,
            Action.OPEN_DISPUTE,
            Action.VIEW_DISPUTE,
            Action.CANCEL_DISPUTE,
        ]
    ),
    Role.SELLER: frozenset(
        [
            Action.VIEW_ORDER,
            Action.CONFIRM_ORDER,
            Action.ADVANCE_DELIVERY,
            Action.CANCEL_ORDER,
            Action.VIEW_ESCROW,
            Action.OPEN_DISPUTE,
            Action.VIEW_DISPUTE,
            Action.CANCEL_DISPUTE,
        ]
    ),
    Role.ADMIN: frozenset(
        [
            Action.VIEW_ORDER,
            Action.CONFIRM_ORDER,
            Action.ADVANCE_DELIVERY,
            Action.CANCEL_ORDER,
            Action.CANCEL_DISPATCHED_ORDER,
            Action.VIEW_ESCROW,
            Action.MANAGE_ESCROW,
            Action.VIEW_DISPUTE,
            Action.RESOLVE_DISPUTE,
        ]
    ),
}

# Adjudication: denied to a party of the subject even when they are staff
PARTY_EXCLUDED_ACTIONS = frozenset([Action.RESOLVE_DISPUTE])


def roles_for(user: Any, subject: Any = None) -> set[str]:
    """
    Roles the user holds with respect to subject.

    subject is anything exposing buyer_id and seller_id (Order, Dispute),
    or None for subject-less admin operations.
    """
    if user is None or not getattr(user, "is_authenticated", False):
        return set()

    roles: set[str] = set()
    if user.is_staff:
        roles.add(Role.ADMIN)
    if subject is not None:
        if subject.buyer_id == user.pk:
            roles.add(Role.BUYER)
        if subject.seller_id == user.pk:
            roles.add(Role.SELLER)
    return roles


def can(user: Any, subject: Any, action: str) -> bool:
    roles = roles_for(user, subject)
    if action in PARTY_EXCLUDED_ACTIONS and roles & {Role.BUYER, Role.SELLER}:
        return False
    return any(action in CAPABILITIES[role] for role in roles)


def require(user: Any, subject: Any, action: str) -> None:
    """
    Raise UnauthorizedActionError unless one of the user's roles grants action.
    """
    if not can(user, subject, action):
        raise UnauthorizedActionError(
            f"You are not allowed to {Action(action).label.lower()}",
            details={
                "action": str(action),
                "user_id": getattr(user, "pk", None),
            },
        )


__all__ = [
    "Action",
    "CAPABILITIES",
    "PARTY_EXCLUDED_ACTIONS",
    "Role",
    "can",
    "require",
    "roles_for",
]
