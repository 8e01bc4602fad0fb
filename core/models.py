"""
core/models.py -- Domain dataclasses for the HRBAC scope engine.

Pure data containers with zero logic. Stores and resolvers in hrbac/ do the
work; storage/ only ever sees plain dicts. Mirrors the split between
dataclasses and repositories used throughout the codebase.

Layer rule: no imports from storage/ or hrbac/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

# ---------------------------------------------------------------------------
# Reserved identifiers
# ---------------------------------------------------------------------------

# Well-known IDs are fixed so every database agrees on them. They are never
# generated at runtime.
SUPER_ADMIN_SCOPE_ID = "00000000-0000-0000-0000-000000000000"
DEFAULT_SYSTEM_SCOPE_ID = "00000000-0000-0000-0000-000000000001"

SUPER_ADMIN_SCOPE_NAME = "Super Admin"
SUPER_ADMIN_SCOPE_LEVEL = "system"
DEFAULT_SYSTEM_SCOPE_NAME = "System"
DEFAULT_SYSTEM_SCOPE_LEVEL = "default"

DEFAULT_OWNER_ROLE_ID = "00000000-0000-0000-0000-000000000100"
DEFAULT_OWNER_ROLE_NAME = "owner"

# Seeded onto the owner role the first time it is created.
OWNER_PERMISSIONS: tuple[str, ...] = (
    "firm_admin",
    "admin_user_management",
    "admin_role_management",
    "admin_scope_hierarchy_management",
    "admin_user_scope_assignment",
)

BRANDING_FIELDS: tuple[str, ...] = ("logo_url", "primary_color", "secondary_color", "tagline")


# ---------------------------------------------------------------------------
# Scopes
# ---------------------------------------------------------------------------


@dataclass
class Branding:
    """Display identity of a scope. Every field is independently optional.

    Fields that are not set stay None; a Branding is only ever built when at
    least one field has a value (see hrbac.scopes.extract_branding).
    """

    logo_url: Optional[str] = None
    primary_color: Optional[str] = None  # "#RRGGBB"
    secondary_color: Optional[str] = None  # "#RRGGBB"
    tagline: Optional[str] = None


@dataclass
class Scope:
    """A node in the organizational tree.

    level is a free-text display tag ("Headquarters", "Department", ...). It
    carries no structural meaning: inheritance follows parent_id only.
    parent_id None marks a root ("firm").
    """

    id: str
    name: str
    level: str
    parent_id: Optional[str] = None
    logo_url: Optional[str] = None
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    tagline: Optional[str] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    changed_at: str = ""  # ISO 8601, refreshed on every mutation


@dataclass
class ScopeTreeNode:
    scope: Scope
    children: list[ScopeTreeNode] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Assignments and roles
# ---------------------------------------------------------------------------


@dataclass
class UserScope:
    """A direct assignment of a user to a scope with a role.

    Identity is the (user_id, scope_id) pair -- there is no surrogate id.
    root_scope_id is a denormalized copy of the scope's root, captured at
    assignment time, so "which firm is this user in" needs no tree walk.
    """

    user_id: str
    scope_id: str
    role_id: str
    root_scope_id: str
    created_at: str = ""
    changed_at: str = ""


@dataclass
class DirectScope:
    """A user's assignment joined with the assigned scope's display fields."""

    scope_id: str
    role_id: str
    scope_name: Optional[str] = None
    level: Optional[str] = None
