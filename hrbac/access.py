"""
hrbac/access.py -- Access / Inheritance Resolver.

Answers one question: is target scope X reachable downward from one of the
user's assigned scopes? Inheritance follows parent_id links only. The level
tag is a display label and is never compared, so a "Team" assignment grants
nothing upward however the tags are named.

Resolution order for check_access():
  1. super admin assignment    -> granted everywhere
  2. exact assignment at X     -> granted via X
  3. X below an assignment     -> granted via the first such assignment in
                                  the user's list (not the nearest one)
  4. otherwise                 -> denied

Every failure to read is a denial (fail closed); .error then says why.
"""

import logging

from core.models import SUPER_ADMIN_SCOPE_ID
from core.results import AccessCheck, EffectiveScopes
from hrbac.assignments import UserScopeStore
from hrbac.scopes import ScopeStore

logger = logging.getLogger("hrbac.access")


class AccessResolver:
    def __init__(self, scopes: ScopeStore, user_scopes: UserScopeStore) -> None:
        self.scopes = scopes
        self.user_scopes = user_scopes

    def check_access(self, user_id: str, target_scope_id: str) -> AccessCheck:
        assigned = self.user_scopes.get_user_scopes(user_id)
        if not assigned.success:
            return AccessCheck(has_access=False, error=assigned.error)
        assignments = assigned.assignments

        for assignment in assignments:
            if assignment.scope_id == SUPER_ADMIN_SCOPE_ID:
                return self._granted(assignment.scope_id, assignments, is_super_admin=True)

        for assignment in assignments:
            if assignment.scope_id == target_scope_id:
                return self._granted(assignment.scope_id, assignments)

        for assignment in assignments:
            below = self.scopes.get_descendants(assignment.scope_id)
            if not below.success:
                logger.warning(
                    "Access check for user %s on %s aborted: descendants of %s unavailable",
                    user_id,
                    target_scope_id,
                    assignment.scope_id,
                )
                return AccessCheck(has_access=False, user_scopes=assignments, error=below.error)
            if any(scope.id == target_scope_id for scope in below.scopes):
                return self._granted(assignment.scope_id, assignments)

        return AccessCheck(has_access=False, user_scopes=assignments)

    def get_effective_scopes(self, user_id: str) -> EffectiveScopes:
        """Direct assignments plus everything they reach below.

        inherited_scope_levels and inherited_scope_ids are deduplicated across
        all assignments, in first-seen order.
        """
        assigned = self.user_scopes.get_user_scopes(user_id)
        if not assigned.success:
            return EffectiveScopes.fail(assigned.error)

        levels: dict[str, None] = {}
        ids: dict[str, None] = {}
        for assignment in assigned.assignments:
            below = self.scopes.get_descendants(assignment.scope_id)
            if not below.success:
                return EffectiveScopes.fail(below.error)
            for scope in below.scopes:
                levels.setdefault(scope.level)
                ids.setdefault(scope.id)

        return EffectiveScopes(
            success=True,
            direct_scopes=assigned.assignments,
            inherited_scope_levels=list(levels),
            inherited_scope_ids=list(ids),
        )

    def _granted(self, via_scope_id: str, assignments, is_super_admin: bool = False) -> AccessCheck:
        via = self.scopes.get_scope(via_scope_id)
        return AccessCheck(
            has_access=True,
            via_scope_id=via_scope_id,
            via_scope_name=via.scope.name if via.success else None,
            is_super_admin=is_super_admin,
            user_scopes=assignments,
        )
