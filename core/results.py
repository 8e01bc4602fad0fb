"""
core/results.py -- Tagged success/failure values returned by the HRBAC services.

Expected failures (not found, invariant violations, validation, storage
trouble) are reported through these objects instead of exceptions. Callers
branch on .success and show .error, which is always safe to display.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from core.models import Branding, DirectScope, Scope, ScopeTreeNode, UserScope


@dataclass
class Result:
    success: bool
    error: Optional[str] = None

    @classmethod
    def fail(cls, error: str):
        return cls(success=False, error=error)


@dataclass
class ScopeResult(Result):
    scope: Optional[Scope] = None
    scopes: list[Scope] = field(default_factory=list)


@dataclass
class ScopeTreeResult(Result):
    tree: list[ScopeTreeNode] = field(default_factory=list)


@dataclass
class BrandingResult(Result):
    """branding is None when nothing is set anywhere the lookup looked.

    scope is always the scope that was asked about, even when the branding
    itself came from its root.
    """

    branding: Optional[Branding] = None
    scope: Optional[Scope] = None


@dataclass
class AssignmentResult(Result):
    """assignment holds the affected row for assign/remove (None when remove
    found nothing); assignments holds list lookups and reconcile output."""

    assignment: Optional[UserScope] = None
    assignments: list[UserScope] = field(default_factory=list)


@dataclass
class DirectScopesResult(Result):
    scopes: list[DirectScope] = field(default_factory=list)


@dataclass
class EffectiveScopes(Result):
    direct_scopes: list[UserScope] = field(default_factory=list)
    inherited_scope_levels: list[str] = field(default_factory=list)
    inherited_scope_ids: list[str] = field(default_factory=list)


@dataclass
class RoleResult(Result):
    role_id: Optional[str] = None


@dataclass
class FirmResult(Result):
    scope: Optional[Scope] = None
    assignment: Optional[UserScope] = None


@dataclass
class AccessCheck:
    """Outcome of an access check.

    via_scope_id is the assigned scope that granted access: the target itself
    for an exact match, an ancestor for inherited access, or the super admin
    scope. error is set only when the check could not be completed; access is
    denied in that case.
    """

    has_access: bool
    via_scope_id: Optional[str] = None
    via_scope_name: Optional[str] = None
    is_super_admin: bool = False
    user_scopes: list[UserScope] = field(default_factory=list)
    error: Optional[str] = None
