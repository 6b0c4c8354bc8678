"""
auth/policy.py -- Self-action restriction policy.

An identity may not demote itself away from ADMIN, suspend itself or delete
itself, whatever its role. The check is a pure function over ids and an
action; handlers classify the requested change first with
classify_role_change() / classify_status_change(), then call
enforce_self_action() before writing anything.

Actions against a different target are not restricted by the self-action
check. enforce_last_admin() is the separate rule that keeps at least one
active ADMIN: it applies to any actor, including the operator CLI.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Optional

from auth.models import Identity, Role, Status
from core.errors import LastAdminRequired, SelfActionForbidden

if TYPE_CHECKING:
    from auth.store import IdentityStore

logger = logging.getLogger("inkpost.auth")


class SelfAction(str, Enum):
    DEMOTE = "demote"
    SUSPEND = "suspend"
    DELETE = "delete"


class SelfActionViolation(str, Enum):
    SELF_DEMOTION = "self_demotion"
    SELF_SUSPENSION = "self_suspension"
    SELF_DELETION = "self_deletion"


_VIOLATIONS: dict[SelfAction, SelfActionViolation] = {
    SelfAction.DEMOTE: SelfActionViolation.SELF_DEMOTION,
    SelfAction.SUSPEND: SelfActionViolation.SELF_SUSPENSION,
    SelfAction.DELETE: SelfActionViolation.SELF_DELETION,
}

VIOLATION_MESSAGES: dict[SelfActionViolation, str] = {
    SelfActionViolation.SELF_DEMOTION: "You cannot remove your own admin privileges.",
    SelfActionViolation.SELF_SUSPENSION: "You cannot suspend your own account.",
    SelfActionViolation.SELF_DELETION: "You cannot delete your own account.",
}


def classify_role_change(current: Role, new: Role) -> Optional[SelfAction]:
    """Return DEMOTE when the change takes a role away from ADMIN."""
    if current is Role.ADMIN and new is not Role.ADMIN:
        return SelfAction.DEMOTE
    return None


def classify_status_change(current: Status, new: Status) -> Optional[SelfAction]:
    """Return SUSPEND when the change takes an ACTIVE identity out of ACTIVE."""
    if current is Status.ACTIVE and new is not Status.ACTIVE:
        return SelfAction.SUSPEND
    return None


def violates_self_action(actor_id: str, target_id: str, action: Optional[SelfAction]) -> Optional[SelfActionViolation]:
    """Return the violation for a self-targeted restricted action, else None."""
    if action is None or actor_id != target_id:
        return None
    return _VIOLATIONS[action]


def enforce_self_action(actor_id: str, target_id: str, action: Optional[SelfAction]) -> None:
    """Raise SelfActionForbidden if the action is a restricted self-action."""
    violation = violates_self_action(actor_id, target_id, action)
    if violation is None:
        return
    logger.warning("Self-action refused: actor=%s action=%s", actor_id, action.value)
    raise SelfActionForbidden(violation.value, VIOLATION_MESSAGES[violation])


def enforce_last_admin(store: IdentityStore, target: Identity, action: Optional[SelfAction]) -> None:
    """Raise LastAdminRequired if the action would leave no active ADMIN.

    Only an ACTIVE ADMIN target counts; demoting a suspended admin or
    deleting a plain user never trips this rule.
    """
    if action is None:
        return
    if target.role is not Role.ADMIN or target.status is not Status.ACTIVE:
        return
    if store.count_active_admins() <= 1:
        logger.warning("Last-admin rule refused %s on identity %s", action.value, target.id)
        raise LastAdminRequired()
