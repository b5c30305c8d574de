"""
Capability checks for task and team operations.

Authorization is a pure function of explicit inputs: the operation, the
caller's id and current role, and (for deletes) a snapshot of the ownership
facts recorded when the resource was created. Nothing here reads request
state or the database; callers gather the facts and pass them in.

Ownership is frozen at creation time. A task can only be deleted by the admin
recorded as its creator, and a team only by its recorded creator, regardless of
anyone's current role.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from errors import AuthorizationError
from models import UserRole

logger = logging.getLogger(__name__)


class Operation(str, enum.Enum):
    CREATE_TASK = "create_task"
    CREATE_TEAM_TASK = "create_team_task"
    ASSIGN_TEAM_TASK = "assign_team_task"
    ASSIGN_TASK = "assign_task"
    BULK_ASSIGN_TASK = "bulk_assign_task"
    DELETE_TASK = "delete_task"
    START_TASK = "start_task"
    COMPLETE_TASK = "complete_task"
    CREATE_TEAM = "create_team"
    ADD_TEAM_MEMBER = "add_team_member"
    DELETE_TEAM = "delete_team"
    VIEW_USER_DETAILS = "view_user_details"


# Operations each role may attempt at all
ROLE_CAPABILITIES = {
    UserRole.ADMIN: frozenset(Operation),
    UserRole.MEMBER: frozenset({
        Operation.CREATE_TEAM_TASK,
        Operation.ASSIGN_TEAM_TASK,
        Operation.START_TASK,
        Operation.COMPLETE_TASK,
        Operation.CREATE_TEAM,
        Operation.ADD_TEAM_MEMBER,
        Operation.DELETE_TEAM,
    }),
}

# Operations that additionally require the caller to be the recorded creator
OWNERSHIP_GATED = frozenset({Operation.DELETE_TASK, Operation.DELETE_TEAM})


@dataclass(frozen=True)
class OwnershipFacts:
    """
    What is known about who created a resource.

    `recorded` is False for legacy rows without a ledger entry; then
    `creator_user_id` holds the fallback column (task assigner or team owner)
    and `creator_role` is unknown.
    """
    creator_user_id: Optional[int]
    creator_role: Optional[UserRole] = None
    recorded: bool = True


def has_capability(role, operation: Operation) -> bool:
    """Check the role capability table only."""
    try:
        role = UserRole(role)
    except ValueError:
        return False
    return operation in ROLE_CAPABILITIES.get(role, frozenset())


def authorize(
    operation: Operation,
    caller_id: int,
    caller_role,
    ownership: Optional[OwnershipFacts] = None,
) -> bool:
    """
    Decide whether a caller may perform an operation.

    Args:
        operation: Operation being attempted
        caller_id: Authenticated caller id
        caller_role: Caller's current role
        ownership: Creator facts, required for ownership-gated operations

    Returns:
        True if allowed, False otherwise

    Example:
        >>> facts = OwnershipFacts(creator_user_id=1, creator_role=UserRole.ADMIN)
        >>> authorize(Operation.DELETE_TASK, 1, UserRole.ADMIN, facts)
        True
        >>> authorize(Operation.DELETE_TASK, 2, UserRole.ADMIN, facts)
        False
    """
    if not has_capability(caller_role, operation):
        logger.info(f"Capability denied: role '{caller_role}' cannot {operation.value}")
        return False

    if operation not in OWNERSHIP_GATED:
        return True

    if ownership is None or ownership.creator_user_id is None:
        logger.info(f"No ownership facts for {operation.value}, denying user {caller_id}")
        return False

    if ownership.creator_user_id != caller_id:
        logger.info(f"Ownership denied: user {caller_id} is not the creator ({operation.value})")
        return False

    if operation == Operation.DELETE_TASK and ownership.recorded:
        # The creator must have been an admin at creation time
        return ownership.creator_role == UserRole.ADMIN

    return True


def require(
    operation: Operation,
    caller_id: int,
    caller_role,
    ownership: Optional[OwnershipFacts] = None,
    message: Optional[str] = None,
) -> None:
    """Raise AuthorizationError unless authorize() allows the operation."""
    if not authorize(operation, caller_id, caller_role, ownership):
        raise AuthorizationError(message or "Insufficient permissions")
