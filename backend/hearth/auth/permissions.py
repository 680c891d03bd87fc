from __future__ import annotations

import enum
from dataclasses import dataclass, fields, replace
from typing import Any, FrozenSet, Iterable, Iterator, Mapping


class Permission(str, enum.Enum):
    # administrative
    ADMINISTRATOR = "ADMINISTRATOR"
    MANAGE_SERVER = "MANAGE_SERVER"
    MANAGE_ROLES = "MANAGE_ROLES"
    MANAGE_CHANNELS = "MANAGE_CHANNELS"
    MANAGE_INVITES = "MANAGE_INVITES"

    # moderation
    KICK_MEMBERS = "KICK_MEMBERS"
    BAN_MEMBERS = "BAN_MEMBERS"
    MUTE_MEMBERS = "MUTE_MEMBERS"
    DEAFEN_MEMBERS = "DEAFEN_MEMBERS"
    MOVE_MEMBERS = "MOVE_MEMBERS"
    MANAGE_NICKNAMES = "MANAGE_NICKNAMES"

    # membership basics
    CREATE_INVITES = "CREATE_INVITES"
    CHANGE_NICKNAME = "CHANGE_NICKNAME"

    # text
    VIEW_CHANNELS = "VIEW_CHANNELS"
    READ_MESSAGES = "READ_MESSAGES"
    SEND_MESSAGES = "SEND_MESSAGES"
    MANAGE_MESSAGES = "MANAGE_MESSAGES"
    EMBED_LINKS = "EMBED_LINKS"
    ATTACH_FILES = "ATTACH_FILES"
    READ_MESSAGE_HISTORY = "READ_MESSAGE_HISTORY"
    MENTION_EVERYONE = "MENTION_EVERYONE"

    # voice
    USE_VOICE = "USE_VOICE"
    SHARE_SCREEN = "SHARE_SCREEN"
    PRIORITY_SPEAKER = "PRIORITY_SPEAKER"


@dataclass(frozen=True)
class PermissionSet:
    """
    Fixed record of permission flags, one boolean field per Permission member.

    ADMINISTRATOR is only honoured by allows(); the raw field values stay
    exactly what the role stored.
    """

    ADMINISTRATOR: bool = False
    MANAGE_SERVER: bool = False
    MANAGE_ROLES: bool = False
    MANAGE_CHANNELS: bool = False
    MANAGE_INVITES: bool = False

    KICK_MEMBERS: bool = False
    BAN_MEMBERS: bool = False
    MUTE_MEMBERS: bool = False
    DEAFEN_MEMBERS: bool = False
    MOVE_MEMBERS: bool = False
    MANAGE_NICKNAMES: bool = False

    CREATE_INVITES: bool = False
    CHANGE_NICKNAME: bool = False

    VIEW_CHANNELS: bool = False
    READ_MESSAGES: bool = False
    SEND_MESSAGES: bool = False
    MANAGE_MESSAGES: bool = False
    EMBED_LINKS: bool = False
    ATTACH_FILES: bool = False
    READ_MESSAGE_HISTORY: bool = False
    MENTION_EVERYONE: bool = False

    USE_VOICE: bool = False
    SHARE_SCREEN: bool = False
    PRIORITY_SPEAKER: bool = False

    # -----------------------------
    # Constructors
    # -----------------------------
    @classmethod
    def none(cls) -> "PermissionSet":
        return cls()

    @classmethod
    def all(cls) -> "PermissionSet":
        return cls(**{p.value: True for p in Permission})

    @classmethod
    def of(cls, *granted: Permission) -> "PermissionSet":
        return cls(**{Permission(p).value: True for p in granted})

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "PermissionSet":
        """
        Build from a stored {flag: bool} object.
        Unknown keys are ignored, missing keys read as False and only a literal
        True grants a flag.
        """
        if not data:
            return cls()
        known = _FLAG_NAMES
        return cls(**{k: True for k, v in data.items() if k in known and v is True})

    # -----------------------------
    # Accessors
    # -----------------------------
    def has(self, permission: Permission) -> bool:
        """Raw flag value (no ADMINISTRATOR expansion)."""
        return bool(getattr(self, Permission(permission).value))

    def allows(self, permission: Permission) -> bool:
        """Permission-check semantics: ADMINISTRATOR satisfies every flag."""
        return self.ADMINISTRATOR or self.has(permission)

    def granted(self) -> FrozenSet[Permission]:
        return frozenset(p for p in Permission if self.has(p))

    def missing_from(self, other: "PermissionSet") -> FrozenSet[Permission]:
        """Flags granted here that `other` does not allow."""
        return frozenset(p for p in self.granted() if not other.allows(p))

    def to_mapping(self) -> dict[str, bool]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def merged(self, changes: Mapping[str, Any] | None) -> "PermissionSet":
        """Apply a partial {flag: bool} update on top of this set."""
        if not changes:
            return self
        updates = {k: bool(v) for k, v in changes.items() if k in _FLAG_NAMES}
        return replace(self, **updates)

    # -----------------------------
    # Algebra
    # -----------------------------
    def union(self, other: "PermissionSet") -> "PermissionSet":
        return PermissionSet(
            **{f.name: getattr(self, f.name) or getattr(other, f.name) for f in fields(self)}
        )

    def __or__(self, other: "PermissionSet") -> "PermissionSet":
        if not isinstance(other, PermissionSet):
            return NotImplemented
        return self.union(other)

    def __iter__(self) -> Iterator[Permission]:
        return iter(sorted(self.granted(), key=lambda p: p.value))


_FLAG_NAMES: FrozenSet[str] = frozenset(f.name for f in fields(PermissionSet))

# Every Permission member must have exactly one PermissionSet field.
if _FLAG_NAMES != {p.value for p in Permission}:
    raise RuntimeError("PermissionSet fields out of sync with Permission")


def union_all(sets: Iterable[PermissionSet]) -> PermissionSet:
    result = PermissionSet.none()
    for s in sets:
        result = result | s
    return result


DEFAULT_ROLE_NAME = "@everyone"
DEFAULT_ROLE_COLOR = "#99AAB5"

# Baseline every member holds through the default role.
DEFAULT_ROLE_PERMISSIONS = PermissionSet.of(
    Permission.VIEW_CHANNELS,
    Permission.READ_MESSAGES,
    Permission.SEND_MESSAGES,
    Permission.READ_MESSAGE_HISTORY,
    Permission.CREATE_INVITES,
    Permission.CHANGE_NICKNAME,
    Permission.EMBED_LINKS,
    Permission.ATTACH_FILES,
    Permission.USE_VOICE,
    Permission.SHARE_SCREEN,
)

# Used when a role is created without an explicit permission object.
NEW_ROLE_PERMISSIONS = DEFAULT_ROLE_PERMISSIONS
