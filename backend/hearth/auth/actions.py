from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple, Type, Union

from hearth.auth.permissions import Permission, PermissionSet
from hearth.auth.store import RolePosition, UserRef


class Action(str, enum.Enum):
    # tenant
    VIEW_TENANT = "VIEW_TENANT"
    UPDATE_TENANT = "UPDATE_TENANT"

    # channels / categories (bodies live elsewhere; they only call the gate)
    CREATE_CHANNEL = "CREATE_CHANNEL"
    UPDATE_CHANNEL = "UPDATE_CHANNEL"
    DELETE_CHANNEL = "DELETE_CHANNEL"
    CREATE_CATEGORY = "CREATE_CATEGORY"
    UPDATE_CATEGORY = "UPDATE_CATEGORY"
    DELETE_CATEGORY = "DELETE_CATEGORY"

    # invites / messages
    CREATE_INVITE = "CREATE_INVITE"
    MANAGE_INVITES = "MANAGE_INVITES"
    SEND_MESSAGE = "SEND_MESSAGE"
    MANAGE_MESSAGES = "MANAGE_MESSAGES"
    CHANGE_OWN_NICKNAME = "CHANGE_OWN_NICKNAME"

    # roles
    CREATE_ROLE = "CREATE_ROLE"
    UPDATE_ROLE = "UPDATE_ROLE"
    RENAME_ROLE = "RENAME_ROLE"
    EDIT_ROLE_PERMISSIONS = "EDIT_ROLE_PERMISSIONS"
    DELETE_ROLE = "DELETE_ROLE"
    REORDER_ROLES = "REORDER_ROLES"

    # members
    ASSIGN_ROLE = "ASSIGN_ROLE"
    REMOVE_ROLE = "REMOVE_ROLE"
    KICK_MEMBER = "KICK_MEMBER"
    BAN_MEMBER = "BAN_MEMBER"
    UNBAN_MEMBER = "UNBAN_MEMBER"
    VIEW_BANS = "VIEW_BANS"
    MUTE_MEMBER = "MUTE_MEMBER"
    MANAGE_NICKNAME = "MANAGE_NICKNAME"


# -----------------------------
# Targets
# -----------------------------
@dataclass(frozen=True)
class RoleTarget:
    role_id: uuid.UUID
    # requested permission object for EDIT_ROLE_PERMISSIONS
    permissions: Optional[PermissionSet] = None


@dataclass(frozen=True)
class NewRoleTarget:
    permissions: Optional[PermissionSet] = None


@dataclass(frozen=True)
class MemberTarget:
    user_id: UserRef


@dataclass(frozen=True)
class RoleAssignmentTarget:
    user_id: UserRef
    role_id: uuid.UUID


@dataclass(frozen=True)
class RoleReorderTarget:
    moves: Tuple[RolePosition, ...]


Target = Union[RoleTarget, NewRoleTarget, MemberTarget, RoleAssignmentTarget, RoleReorderTarget]


@dataclass(frozen=True)
class ActionRule:
    permission: Permission
    target_type: Optional[Type] = None


ACTION_RULES: Mapping[Action, ActionRule] = {
    Action.VIEW_TENANT: ActionRule(Permission.VIEW_CHANNELS),
    Action.UPDATE_TENANT: ActionRule(Permission.MANAGE_SERVER),
    Action.CREATE_CHANNEL: ActionRule(Permission.MANAGE_CHANNELS),
    Action.UPDATE_CHANNEL: ActionRule(Permission.MANAGE_CHANNELS),
    Action.DELETE_CHANNEL: ActionRule(Permission.MANAGE_CHANNELS),
    Action.CREATE_CATEGORY: ActionRule(Permission.MANAGE_CHANNELS),
    Action.UPDATE_CATEGORY: ActionRule(Permission.MANAGE_CHANNELS),
    Action.DELETE_CATEGORY: ActionRule(Permission.MANAGE_CHANNELS),
    Action.CREATE_INVITE: ActionRule(Permission.CREATE_INVITES),
    Action.MANAGE_INVITES: ActionRule(Permission.MANAGE_INVITES),
    Action.SEND_MESSAGE: ActionRule(Permission.SEND_MESSAGES),
    Action.MANAGE_MESSAGES: ActionRule(Permission.MANAGE_MESSAGES),
    Action.CHANGE_OWN_NICKNAME: ActionRule(Permission.CHANGE_NICKNAME),
    Action.CREATE_ROLE: ActionRule(Permission.MANAGE_ROLES, NewRoleTarget),
    Action.UPDATE_ROLE: ActionRule(Permission.MANAGE_ROLES, RoleTarget),
    Action.RENAME_ROLE: ActionRule(Permission.MANAGE_ROLES, RoleTarget),
    Action.EDIT_ROLE_PERMISSIONS: ActionRule(Permission.MANAGE_ROLES, RoleTarget),
    Action.DELETE_ROLE: ActionRule(Permission.MANAGE_ROLES, RoleTarget),
    Action.REORDER_ROLES: ActionRule(Permission.MANAGE_ROLES, RoleReorderTarget),
    Action.ASSIGN_ROLE: ActionRule(Permission.MANAGE_ROLES, RoleAssignmentTarget),
    Action.REMOVE_ROLE: ActionRule(Permission.MANAGE_ROLES, RoleAssignmentTarget),
    Action.KICK_MEMBER: ActionRule(Permission.KICK_MEMBERS, MemberTarget),
    Action.BAN_MEMBER: ActionRule(Permission.BAN_MEMBERS, MemberTarget),
    Action.UNBAN_MEMBER: ActionRule(Permission.BAN_MEMBERS),
    Action.VIEW_BANS: ActionRule(Permission.BAN_MEMBERS),
    Action.MUTE_MEMBER: ActionRule(Permission.MUTE_MEMBERS, MemberTarget),
    Action.MANAGE_NICKNAME: ActionRule(Permission.MANAGE_NICKNAMES, MemberTarget),
}

if set(ACTION_RULES) != set(Action):
    raise RuntimeError("every Action needs an ActionRule")

# Actions no rule may ever authorize against the tenant owner.
OWNER_PROTECTED_ACTIONS = frozenset(
    {
        Action.KICK_MEMBER,
        Action.BAN_MEMBER,
        Action.MUTE_MEMBER,
        Action.REMOVE_ROLE,
    }
)

# Default role: name, permission object, existence and position are fixed.
DEFAULT_ROLE_LOCKED_ACTIONS = frozenset(
    {
        Action.RENAME_ROLE,
        Action.EDIT_ROLE_PERMISSIONS,
        Action.DELETE_ROLE,
    }
)


def rule_for(action: Action) -> ActionRule:
    return ACTION_RULES[Action(action)]


def role_edit_actions(
    *,
    name: Optional[str] = None,
    color: Optional[str] = None,
    permissions: Optional[Mapping[str, bool]] = None,
) -> list[Action]:
    """Expand a role PATCH body into the actions it needs authorized."""
    actions: list[Action] = []
    if name:
        actions.append(Action.RENAME_ROLE)
    if permissions:
        actions.append(Action.EDIT_ROLE_PERMISSIONS)
    if color:
        actions.append(Action.UPDATE_ROLE)
    return actions
