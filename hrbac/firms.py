"""
hrbac/firms.py -- Firm / Onboarding Orchestrator.

A firm is a root scope plus its creator assigned there as "owner". Creating
one touches two tables with no transaction spanning them, so create_firm()
is a two-step saga:

    create root scope  ->  assign creator
                              |
                           failed? -> delete the scope (best effort)

A failed compensation is logged at WARNING and never replaces the assignment
error the caller sees.

The owner role has a fixed ID so every database agrees on it. Its
permissions are seeded the first time the role is created; seeding is best
effort and a failure there does not block firm creation.

Deciding *whether* a user should create a firm (pending invitation or not)
belongs to the caller; UserScopeStore.needs_onboarding() is the probe.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core import errors
from core.models import DEFAULT_OWNER_ROLE_ID, DEFAULT_OWNER_ROLE_NAME, OWNER_PERMISSIONS
from core.results import FirmResult, RoleResult
from hrbac.assignments import UserScopeStore
from hrbac.scopes import ScopeStore
from storage.database import Database

logger = logging.getLogger("hrbac.firms")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class FirmService:
    def __init__(self, db: Database, scopes: ScopeStore, user_scopes: UserScopeStore) -> None:
        self.db = db
        self.scopes = scopes
        self.user_scopes = user_scopes

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def ensure_owner_role(self) -> RoleResult:
        """Return the owner role's ID, creating and seeding it if needed.

        Looks up the fixed owner ID first, then any role already named
        "owner" (databases seeded before the fixed ID existed).
        """
        try:
            if self.db.roles.find_by({"id": DEFAULT_OWNER_ROLE_ID}):
                return RoleResult(success=True, role_id=DEFAULT_OWNER_ROLE_ID)
            by_name = self.db.roles.find_by({"role_name": DEFAULT_OWNER_ROLE_NAME})
            if by_name:
                return RoleResult(success=True, role_id=by_name[0]["id"])

            now = _now_iso()
            try:
                rows = self.db.roles.insert(
                    {
                        "id": DEFAULT_OWNER_ROLE_ID,
                        "role_name": DEFAULT_OWNER_ROLE_NAME,
                        "created_at": now,
                        "changed_at": now,
                    }
                )
            except IntegrityError:
                # Created concurrently; whoever won seeds the permissions.
                return self.get_role_by_name(DEFAULT_OWNER_ROLE_NAME)
        except SQLAlchemyError as exc:
            return RoleResult.fail(errors.sanitize_error(logger, exc, "ensure_owner_role"))
        if not rows:
            return RoleResult.fail(errors.OWNER_ROLE_FAILED)

        logger.info("Created owner role %s", DEFAULT_OWNER_ROLE_ID)
        self._seed_owner_permissions(DEFAULT_OWNER_ROLE_ID)
        return RoleResult(success=True, role_id=DEFAULT_OWNER_ROLE_ID)

    def get_role_by_name(self, role_name: str) -> RoleResult:
        try:
            rows = self.db.roles.find_by({"role_name": role_name})
        except SQLAlchemyError as exc:
            return RoleResult.fail(errors.sanitize_error(logger, exc, "get_role_by_name", role_name=role_name))
        if not rows:
            return RoleResult.fail(errors.role_not_found(role_name))
        return RoleResult(success=True, role_id=rows[0]["id"])

    def _seed_owner_permissions(self, role_id: str) -> None:
        """Find-or-create each owner permission and link it to role_id."""
        now = _now_iso()
        try:
            for name in OWNER_PERMISSIONS:
                found = self.db.permissions.find_by({"permission_name": name})
                if found:
                    permission_id = found[0]["id"]
                else:
                    permission_id = self.db.permissions.insert(
                        {
                            "permission_name": name,
                            "description": f"{name} permission",
                            "created_at": now,
                            "changed_at": now,
                        }
                    )[0]["id"]
                link = {"role_id": role_id, "permission_id": permission_id}
                if not self.db.role_permissions.find_by(link):
                    self.db.role_permissions.insert({**link, "created_at": now, "changed_at": now})
        except SQLAlchemyError as exc:
            logger.warning("Seeding owner permissions for role %s failed: %s", role_id, exc)

    # ------------------------------------------------------------------
    # Firms
    # ------------------------------------------------------------------

    def create_firm(
        self,
        user_id: str,
        firm_name: str,
        org_structure: str,
        role_id: Optional[str] = None,
    ) -> FirmResult:
        """Create a root scope named firm_name and make user_id its owner.

        org_structure becomes the root's level tag (e.g. "Headquarters").
        role_id overrides the owner role.
        """
        firm_name = (firm_name or "").strip()
        org_structure = (org_structure or "").strip()
        if not firm_name:
            return FirmResult.fail(errors.FIRM_NAME_REQUIRED)
        if not org_structure:
            return FirmResult.fail(errors.ORG_STRUCTURE_REQUIRED)

        if role_id is None:
            role = self.ensure_owner_role()
            if not role.success:
                return FirmResult.fail(role.error)
            role_id = role.role_id

        created = self.scopes.create_scope(firm_name, org_structure)
        if not created.success:
            return FirmResult.fail(created.error)
        scope = created.scope

        assigned = self.user_scopes.assign(user_id, scope.id, role_id, root_scope_id=scope.id)
        if not assigned.success:
            self._rollback_scope(scope.id, user_id)
            return FirmResult.fail(assigned.error)

        logger.info("Firm %r (%s) created for user %s", firm_name, scope.id, user_id)
        return FirmResult(success=True, scope=scope, assignment=assigned.assignment)

    def _rollback_scope(self, scope_id: str, user_id: str) -> None:
        try:
            self.db.scopes.delete_by_id(scope_id)
        except SQLAlchemyError as exc:
            logger.warning("Rollback of firm scope %s for user %s failed: %s", scope_id, user_id, exc)
        else:
            logger.info("Rolled back firm scope %s after failed owner assignment", scope_id)
