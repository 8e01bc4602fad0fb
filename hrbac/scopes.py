"""
hrbac/scopes.py -- Scope Store: CRUD and hierarchy traversal over hrbac_scopes.

Scopes form a forest linked by parent_id. A root (parent_id None) is a
"firm"; everything below it inherits from it. Two reserved scopes sit
outside every firm:

  - SUPER_ADMIN_SCOPE_ID: holding it grants access everywhere
  - DEFAULT_SYSTEM_SCOPE_ID: home scope when multi-tenancy is off

Neither can be updated or deleted through this store.

Walks (ancestors, descendants, tree) are iterative and keep a visited set, so
an arbitrarily deep tree cannot exhaust the stack and a cycle left behind by
a direct database edit ends the walk with a warning instead of hanging.

Public methods never raise for expected failures. They return ScopeResult /
ScopeTreeResult with success False and a display-safe error; storage
exceptions are logged with context and replaced by the generic message.

Usage:
    store = ScopeStore(db)
    acme = store.create_scope("Acme", "Headquarters").scope
    eng = store.create_scope("Engineering", "Department", parent_id=acme.id).scope
    store.get_descendants(acme.id).scopes    # [eng, ...]
    store.get_root_id(eng.id)                # acme.id
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Optional, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core import errors
from core.models import (
    BRANDING_FIELDS,
    DEFAULT_SYSTEM_SCOPE_ID,
    DEFAULT_SYSTEM_SCOPE_LEVEL,
    DEFAULT_SYSTEM_SCOPE_NAME,
    SUPER_ADMIN_SCOPE_ID,
    SUPER_ADMIN_SCOPE_LEVEL,
    SUPER_ADMIN_SCOPE_NAME,
    Branding,
    Scope,
    ScopeTreeNode,
)
from core.results import ScopeResult, ScopeTreeResult
from hrbac.validation import validate_branding
from storage.database import Database

logger = logging.getLogger("hrbac.scopes")

# Keys update_scope() accepts. Everything else is rejected before any read.
UPDATABLE_FIELDS: frozenset[str] = frozenset({"name", "level", "parent_id", *BRANDING_FIELDS})

# Sentinel for "argument not passed" where None is itself meaningful.
_UNSET: Any = object()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def is_super_admin_scope(scope_id: Optional[str]) -> bool:
    return scope_id == SUPER_ADMIN_SCOPE_ID


def is_default_system_scope(scope_id: Optional[str]) -> bool:
    return scope_id == DEFAULT_SYSTEM_SCOPE_ID


def is_system_scope(scope_id: Optional[str]) -> bool:
    """True for either reserved scope."""
    return is_super_admin_scope(scope_id) or is_default_system_scope(scope_id)


def has_branding(scope: Scope) -> bool:
    return any(getattr(scope, name) for name in BRANDING_FIELDS)


def extract_branding(scope: Scope) -> Optional[Branding]:
    """Return the scope's own branding, or None when no field is set."""
    if not has_branding(scope):
        return None
    return Branding(**{name: getattr(scope, name) or None for name in BRANDING_FIELDS})


def branding_fields(branding: Union[Branding, Mapping[str, Any], None]) -> dict[str, Optional[str]]:
    """Flatten branding input to all four columns, empty values as None."""
    if branding is None:
        data: Mapping[str, Any] = {}
    elif isinstance(branding, Branding):
        data = asdict(branding)
    else:
        data = branding
    return {name: data.get(name) or None for name in BRANDING_FIELDS}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ScopeStore:
    def __init__(self, db: Database) -> None:
        self.db = db
        self.table = db.scopes

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_scope(self, scope_id: str) -> ScopeResult:
        try:
            scope = self._find_one({"id": scope_id})
        except SQLAlchemyError as exc:
            return ScopeResult.fail(errors.sanitize_error(logger, exc, "get_scope", scope_id=scope_id))
        if scope is None:
            return ScopeResult.fail(errors.SCOPE_NOT_FOUND)
        return ScopeResult(success=True, scope=scope)

    def get_scope_by_name(self, name: str) -> ScopeResult:
        """Exact, case-sensitive name match. Names are not unique; the first
        stored match wins."""
        try:
            scope = self._find_one({"name": name})
        except SQLAlchemyError as exc:
            return ScopeResult.fail(errors.sanitize_error(logger, exc, "get_scope_by_name", name=name))
        if scope is None:
            return ScopeResult.fail(errors.SCOPE_NOT_FOUND)
        return ScopeResult(success=True, scope=scope)

    def get_all_scopes(self, parent_id: Optional[str] = _UNSET) -> ScopeResult:
        """All scopes, or only those under parent_id when it is passed.

        parent_id=None is a real filter (roots only), distinct from omitting it.
        """
        criteria = {} if parent_id is _UNSET else {"parent_id": parent_id}
        try:
            rows = self.table.find_by(criteria)
        except SQLAlchemyError as exc:
            return ScopeResult.fail(errors.sanitize_error(logger, exc, "get_all_scopes", **criteria))
        return ScopeResult(success=True, scopes=[_row_to_scope(r) for r in rows])

    def get_root_scopes(self) -> ScopeResult:
        """Every parentless scope, system scopes included."""
        return self.get_all_scopes(parent_id=None)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_scope(
        self,
        name: str,
        level: str,
        parent_id: Optional[str] = None,
        branding: Union[Branding, Mapping[str, Any], None] = None,
    ) -> ScopeResult:
        fields = branding_fields(branding)
        invalid = validate_branding(fields)
        if invalid:
            return ScopeResult.fail(invalid)

        try:
            if parent_id and self._find_one({"id": parent_id}) is None:
                return ScopeResult.fail(errors.PARENT_NOT_FOUND)
            now = _now_iso()
            rows = self.table.insert(
                {
                    "name": name,
                    "level": level,
                    "parent_id": parent_id or None,
                    **fields,
                    "created_at": now,
                    "changed_at": now,
                }
            )
        except SQLAlchemyError as exc:
            return ScopeResult.fail(
                errors.sanitize_error(logger, exc, "create_scope", name=name, level=level, parent_id=parent_id)
            )
        if not rows:
            return ScopeResult.fail(errors.CREATE_SCOPE_FAILED)
        return ScopeResult(success=True, scope=_row_to_scope(rows[0]))

    def update_scope(self, scope_id: str, **fields) -> ScopeResult:
        """Apply a partial update. Only keys actually passed are written.

        Passing a branding field as None clears it; omitting it leaves it
        alone. parent_id=None detaches the scope into a new root. A non-None
        parent_id must exist and must not be the scope itself or any of its
        descendants.
        """
        if is_system_scope(scope_id):
            return ScopeResult.fail(errors.SYSTEM_SCOPE_IMMUTABLE)

        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            return ScopeResult.fail(errors.unknown_fields(unknown))

        invalid = validate_branding({k: v for k, v in fields.items() if k in BRANDING_FIELDS})
        if invalid:
            return ScopeResult.fail(invalid)

        try:
            if self._find_one({"id": scope_id}) is None:
                return ScopeResult.fail(errors.SCOPE_NOT_FOUND)

            new_parent = fields.get("parent_id")
            if new_parent is not None:
                if new_parent == scope_id:
                    return ScopeResult.fail(errors.SELF_PARENT)
                if self._find_one({"id": new_parent}) is None:
                    return ScopeResult.fail(errors.PARENT_NOT_FOUND)
                if any(s.id == new_parent for s in self._descendants(scope_id)):
                    return ScopeResult.fail(errors.DESCENDANT_PARENT)

            values = dict(fields)
            for name in BRANDING_FIELDS:
                if name in values:
                    values[name] = values[name] or None
            values["changed_at"] = _now_iso()
            rows = self.table.update_by_id(scope_id, values)
        except SQLAlchemyError as exc:
            return ScopeResult.fail(
                errors.sanitize_error(logger, exc, "update_scope", scope_id=scope_id, fields=sorted(fields))
            )
        if not rows:
            return ScopeResult.fail(errors.UPDATE_SCOPE_FAILED)
        return ScopeResult(success=True, scope=_row_to_scope(rows[0]))

    def delete_scope(self, scope_id: str) -> ScopeResult:
        """Delete a scope and return the record as it was.

        Descendants and their assignments go with it through the ON DELETE
        CASCADE foreign keys.
        """
        if is_system_scope(scope_id):
            return ScopeResult.fail(errors.SYSTEM_SCOPE_IMMUTABLE)
        try:
            existing = self._find_one({"id": scope_id})
            if existing is None:
                return ScopeResult.fail(errors.SCOPE_NOT_FOUND)
            self.table.delete_by_id(scope_id)
        except SQLAlchemyError as exc:
            return ScopeResult.fail(errors.sanitize_error(logger, exc, "delete_scope", scope_id=scope_id))
        return ScopeResult(success=True, scope=existing)

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    def get_children(self, scope_id: str) -> ScopeResult:
        """Immediate children. An unknown scope simply has none."""
        try:
            children = self._children(scope_id)
        except SQLAlchemyError as exc:
            return ScopeResult.fail(errors.sanitize_error(logger, exc, "get_children", scope_id=scope_id))
        return ScopeResult(success=True, scopes=children)

    def get_ancestors(self, scope_id: str) -> ScopeResult:
        """Ancestors ordered from immediate parent up to the root."""
        try:
            scope = self._find_one({"id": scope_id})
            if scope is None:
                return ScopeResult.fail(errors.SCOPE_NOT_FOUND)
            ancestors = self._ancestors(scope)
        except SQLAlchemyError as exc:
            return ScopeResult.fail(errors.sanitize_error(logger, exc, "get_ancestors", scope_id=scope_id))
        return ScopeResult(success=True, scopes=ancestors)

    def get_descendants(self, scope_id: str) -> ScopeResult:
        """Every scope below scope_id, depth-first per branch, parents before
        their children. The scope itself is not included."""
        try:
            descendants = self._descendants(scope_id)
        except SQLAlchemyError as exc:
            return ScopeResult.fail(errors.sanitize_error(logger, exc, "get_descendants", scope_id=scope_id))
        return ScopeResult(success=True, scopes=descendants)

    def get_root_scope(self, scope_id: str) -> ScopeResult:
        """The topmost reachable ancestor, or the scope itself when it is a root."""
        try:
            scope = self._find_one({"id": scope_id})
            if scope is None:
                return ScopeResult.fail(errors.SCOPE_NOT_FOUND)
            ancestors = self._ancestors(scope)
        except SQLAlchemyError as exc:
            return ScopeResult.fail(errors.sanitize_error(logger, exc, "get_root_scope", scope_id=scope_id))
        return ScopeResult(success=True, scope=ancestors[-1] if ancestors else scope)

    def get_root_id(self, scope_id: str) -> Optional[str]:
        """ID of the scope's root, or None if the scope (or storage) is unavailable."""
        result = self.get_root_scope(scope_id)
        return result.scope.id if result.success else None

    def get_scope_tree(self, root_id: Optional[str] = None) -> ScopeTreeResult:
        """Nested view of one tree, or of every firm when root_id is omitted.

        Without root_id the reserved system roots are left out.
        """
        try:
            if root_id:
                root = self._find_one({"id": root_id})
                if root is None:
                    return ScopeTreeResult.fail(errors.ROOT_NOT_FOUND)
                roots = [root]
            else:
                roots = [
                    _row_to_scope(r) for r in self.table.find_by({"parent_id": None}) if not is_system_scope(r["id"])
                ]
            tree = [self._build_tree(root) for root in roots]
        except SQLAlchemyError as exc:
            return ScopeTreeResult.fail(errors.sanitize_error(logger, exc, "get_scope_tree", root_id=root_id))
        return ScopeTreeResult(success=True, tree=tree)

    # ------------------------------------------------------------------
    # Reserved scopes
    # ------------------------------------------------------------------

    def ensure_super_admin_scope(self) -> ScopeResult:
        return self._ensure_reserved(SUPER_ADMIN_SCOPE_ID, SUPER_ADMIN_SCOPE_NAME, SUPER_ADMIN_SCOPE_LEVEL)

    def ensure_default_system_scope(self) -> ScopeResult:
        return self._ensure_reserved(DEFAULT_SYSTEM_SCOPE_ID, DEFAULT_SYSTEM_SCOPE_NAME, DEFAULT_SYSTEM_SCOPE_LEVEL)

    def ensure_system_scopes(self) -> ScopeResult:
        """Ensure both reserved scopes; scopes lists them on success."""
        ensured = []
        for result in (self.ensure_super_admin_scope(), self.ensure_default_system_scope()):
            if not result.success:
                return result
            ensured.append(result.scope)
        return ScopeResult(success=True, scopes=ensured)

    def _ensure_reserved(self, scope_id: str, name: str, level: str) -> ScopeResult:
        try:
            existing = self._find_one({"id": scope_id})
            if existing is not None:
                return ScopeResult(success=True, scope=existing)
            now = _now_iso()
            try:
                rows = self.table.insert(
                    {
                        "id": scope_id,
                        "name": name,
                        "level": level,
                        "parent_id": None,
                        **branding_fields(None),
                        "created_at": now,
                        "changed_at": now,
                    }
                )
            except IntegrityError:
                # Another process created it between our read and insert.
                existing = self._find_one({"id": scope_id})
                if existing is None:
                    raise
                return ScopeResult(success=True, scope=existing)
        except SQLAlchemyError as exc:
            return ScopeResult.fail(errors.sanitize_error(logger, exc, "ensure_reserved_scope", scope_id=scope_id))
        if not rows:
            return ScopeResult.fail(errors.CREATE_SCOPE_FAILED)
        logger.info("Created reserved scope %s (%s)", name, scope_id)
        return ScopeResult(success=True, scope=_row_to_scope(rows[0]))

    # ------------------------------------------------------------------
    # Walks -- raise on storage errors; public callers convert
    # ------------------------------------------------------------------

    def _find_one(self, criteria: dict) -> Optional[Scope]:
        rows = self.table.find_by(criteria)
        return _row_to_scope(rows[0]) if rows else None

    def _children(self, scope_id: str) -> list[Scope]:
        return [_row_to_scope(r) for r in self.table.find_by({"parent_id": scope_id})]

    def _ancestors(self, scope: Scope) -> list[Scope]:
        ancestors: list[Scope] = []
        seen = {scope.id}
        current = scope
        while current.parent_id:
            if current.parent_id in seen:
                logger.warning("Cycle in scope hierarchy at %s -> %s; ancestor walk stopped", current.id, current.parent_id)
                break
            parent = self._find_one({"id": current.parent_id})
            if parent is None:
                logger.warning(
                    "Scope %s references missing parent %s; treating it as the root", current.id, current.parent_id
                )
                break
            ancestors.append(parent)
            seen.add(parent.id)
            current = parent
        return ancestors

    def _descendants(self, scope_id: str) -> list[Scope]:
        descendants: list[Scope] = []
        seen = {scope_id}
        stack = list(reversed(self._children(scope_id)))
        while stack:
            scope = stack.pop()
            if scope.id in seen:
                logger.warning("Cycle in scope hierarchy below %s at %s; branch skipped", scope_id, scope.id)
                continue
            seen.add(scope.id)
            descendants.append(scope)
            stack.extend(reversed(self._children(scope.id)))
        return descendants

    def _build_tree(self, root: Scope) -> ScopeTreeNode:
        top = ScopeTreeNode(scope=root)
        seen = {root.id}
        pending = [top]
        while pending:
            node = pending.pop()
            for child in self._children(node.scope.id):
                if child.id in seen:
                    logger.warning("Cycle in scope hierarchy under %s at %s; branch skipped", root.id, child.id)
                    continue
                seen.add(child.id)
                child_node = ScopeTreeNode(scope=child)
                node.children.append(child_node)
                pending.append(child_node)
        return top


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_scope(row) -> Scope:
    """Convert a hrbac_scopes row into a Scope. Empty branding becomes None."""
    return Scope(
        id=row["id"],
        name=row["name"],
        level=row["level"],
        parent_id=row["parent_id"] or None,
        logo_url=row["logo_url"] or None,
        primary_color=row["primary_color"] or None,
        secondary_color=row["secondary_color"] or None,
        tagline=row["tagline"] or None,
        created_at=row["created_at"] or "",
        changed_at=row["changed_at"] or "",
    )
