"""
hrbac/assignments.py -- User-Scope Assignment Store over hrbac_user_scopes.

An assignment places a user at one scope with one role. Identity is the
(user_id, scope_id) pair; the composite primary key is also the uniqueness
guarantee, so two concurrent assign() calls for the same pair end with one
row and two successful results.

assign() and remove() are idempotent: "already in the desired state" is a
success, never an error. That makes onboarding and bulk reconciliation safe
to replay.

Usage:
    store = UserScopeStore(db, scopes)
    store.assign("user-1", eng.id, owner_role_id)
    store.reconcile("user-1", [(eng.id, owner_role_id), (sales.id, member_role_id)])
    store.user_has_any_scope("user-1")   # True
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core import errors
from core.models import DEFAULT_SYSTEM_SCOPE_ID, SUPER_ADMIN_SCOPE_ID, DirectScope, UserScope
from core.results import AssignmentResult, DirectScopesResult
from hrbac.scopes import ScopeStore
from storage.database import Database

logger = logging.getLogger("hrbac.assignments")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class UserScopeStore:
    def __init__(self, db: Database, scopes: ScopeStore) -> None:
        self.table = db.user_scopes
        self.scopes = scopes

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_user_scopes(self, user_id: str) -> AssignmentResult:
        """Direct assignments of a user, in storage order."""
        try:
            rows = self.table.find_by({"user_id": user_id})
        except SQLAlchemyError as exc:
            return AssignmentResult.fail(errors.sanitize_error(logger, exc, "get_user_scopes", user_id=user_id))
        return AssignmentResult(success=True, assignments=[_row_to_user_scope(r) for r in rows])

    def get_scope_users(self, scope_id: str) -> AssignmentResult:
        """Assignments made directly at scope_id. Inherited users are not listed."""
        try:
            rows = self.table.find_by({"scope_id": scope_id})
        except SQLAlchemyError as exc:
            return AssignmentResult.fail(errors.sanitize_error(logger, exc, "get_scope_users", scope_id=scope_id))
        return AssignmentResult(success=True, assignments=[_row_to_user_scope(r) for r in rows])

    def get_user_direct_scopes(self, user_id: str) -> DirectScopesResult:
        """A user's assignments with the assigned scope's name and level.

        Assignments whose scope can no longer be read keep None for both.
        """
        result = self.get_user_scopes(user_id)
        if not result.success:
            return DirectScopesResult.fail(result.error)
        direct = []
        for assignment in result.assignments:
            scope = self.scopes.get_scope(assignment.scope_id).scope
            direct.append(
                DirectScope(
                    scope_id=assignment.scope_id,
                    role_id=assignment.role_id,
                    scope_name=scope.name if scope else None,
                    level=scope.level if scope else None,
                )
            )
        return DirectScopesResult(success=True, scopes=direct)

    def user_has_any_scope(self, user_id: str) -> bool:
        """False on storage failure as well as on "no assignments"."""
        result = self.get_user_scopes(user_id)
        return result.success and bool(result.assignments)

    def needs_onboarding(self, user_id: str) -> bool:
        """True when the user has no scope yet and must join or create a firm."""
        return not self.user_has_any_scope(user_id)

    def is_user_super_admin(self, user_id: str) -> bool:
        result = self.get_user_scopes(user_id)
        return result.success and any(a.scope_id == SUPER_ADMIN_SCOPE_ID for a in result.assignments)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def assign(
        self,
        user_id: str,
        scope_id: str,
        role_id: str,
        root_scope_id: Optional[str] = None,
    ) -> AssignmentResult:
        """Assign user_id to scope_id with role_id.

        An existing assignment is returned unchanged, even when role_id
        differs. root_scope_id defaults to the scope's computed root.
        """
        context = {"user_id": user_id, "scope_id": scope_id}
        try:
            existing = self._find_one(user_id, scope_id)
            if existing is not None:
                return AssignmentResult(success=True, assignment=existing)

            if root_scope_id is None:
                root = self.scopes.get_root_scope(scope_id)
                if not root.success:
                    return AssignmentResult.fail(root.error)
                root_scope_id = root.scope.id
            elif not self.scopes.get_scope(scope_id).success:
                return AssignmentResult.fail(errors.SCOPE_NOT_FOUND)

            now = _now_iso()
            try:
                rows = self.table.insert(
                    {
                        "user_id": user_id,
                        "scope_id": scope_id,
                        "role_id": role_id,
                        "root_scope_id": root_scope_id,
                        "created_at": now,
                        "changed_at": now,
                    }
                )
            except IntegrityError:
                # Lost a race with a concurrent assign, or the scope was
                # deleted after the existence check.
                existing = self._find_one(user_id, scope_id)
                if existing is not None:
                    return AssignmentResult(success=True, assignment=existing)
                if not self.scopes.get_scope(scope_id).success:
                    return AssignmentResult.fail(errors.SCOPE_NOT_FOUND)
                return AssignmentResult.fail(errors.ALREADY_ASSIGNED)
        except SQLAlchemyError as exc:
            return AssignmentResult.fail(errors.sanitize_error(logger, exc, "assign", **context))
        if not rows:
            return AssignmentResult.fail(errors.ASSIGN_FAILED)
        return AssignmentResult(success=True, assignment=_row_to_user_scope(rows[0]))

    def remove(self, user_id: str, scope_id: str) -> AssignmentResult:
        """Remove an assignment. .assignment is the removed row, or None when
        there was nothing to remove."""
        try:
            existing = self._find_one(user_id, scope_id)
            if existing is None:
                return AssignmentResult(success=True)
            self.table.delete_by_id({"user_id": user_id, "scope_id": scope_id})
        except SQLAlchemyError as exc:
            return AssignmentResult.fail(
                errors.sanitize_error(logger, exc, "remove", user_id=user_id, scope_id=scope_id)
            )
        return AssignmentResult(success=True, assignment=existing)

    def reconcile(self, user_id: str, targets: Iterable[tuple[str, str]]) -> AssignmentResult:
        """Make the user's assigned scopes equal the scope IDs in targets.

        targets holds (scope_id, role_id) pairs. Extras are removed first,
        then missing ones assigned. Scopes in both sets are not touched, so a
        role change on a kept scope needs an explicit remove + assign. Stops
        at the first failing step and returns its error.
        """
        wanted: dict[str, str] = {}
        for scope_id, role_id in targets:
            wanted.setdefault(scope_id, role_id)

        current = self.get_user_scopes(user_id)
        if not current.success:
            return current
        held = {a.scope_id for a in current.assignments}

        for assignment in current.assignments:
            if assignment.scope_id not in wanted:
                result = self.remove(user_id, assignment.scope_id)
                if not result.success:
                    return result

        for scope_id, role_id in wanted.items():
            if scope_id not in held:
                result = self.assign(user_id, scope_id, role_id)
                if not result.success:
                    return result

        return self.get_user_scopes(user_id)

    def assign_super_admin_scope(self, user_id: str, role_id: str) -> AssignmentResult:
        """Grant global access. The super admin scope must already exist."""
        return self.assign(user_id, SUPER_ADMIN_SCOPE_ID, role_id, root_scope_id=SUPER_ADMIN_SCOPE_ID)

    def assign_default_system_scope(self, user_id: str, role_id: str) -> AssignmentResult:
        return self.assign(user_id, DEFAULT_SYSTEM_SCOPE_ID, role_id, root_scope_id=DEFAULT_SYSTEM_SCOPE_ID)

    def _find_one(self, user_id: str, scope_id: str) -> Optional[UserScope]:
        rows = self.table.find_by({"user_id": user_id, "scope_id": scope_id})
        return _row_to_user_scope(rows[0]) if rows else None


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_user_scope(row) -> UserScope:
    return UserScope(
        user_id=row["user_id"],
        scope_id=row["scope_id"],
        role_id=row["role_id"],
        root_scope_id=row["root_scope_id"],
        created_at=row["created_at"] or "",
        changed_at=row["changed_at"] or "",
    )
