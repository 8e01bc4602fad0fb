"""Unit tests for hrbac/scopes.py -- ScopeStore CRUD and hierarchy walks.

Covers:
- create/get/update/delete and their NotFound paths
- re-parenting guards: self, missing parent, descendant (no write on failure)
- partial updates only touch the keys passed
- system scopes cannot be updated or deleted
- ancestors / descendants / root / tree, including dangling parents and cycles
- ensure_* for the reserved scopes is idempotent
- storage exceptions become the generic message
"""

import logging
from unittest.mock import patch

import pytest

from core import errors
from core.models import DEFAULT_SYSTEM_SCOPE_ID, SUPER_ADMIN_SCOPE_ID, Branding
from hrbac.scopes import extract_branding, has_branding, is_system_scope
from hrbac.service import HRBAC
from storage.database import Database


@pytest.fixture
def scopes(hrbac):
    return hrbac.scopes


# ---------------------------------------------------------------------------
# TestCreateAndGet
# ---------------------------------------------------------------------------


class TestCreateAndGet:
    def test_create_root_scope(self, scopes):
        result = scopes.create_scope("Acme", "Headquarters")
        assert result.success
        assert result.scope.parent_id is None
        assert result.scope.created_at == result.scope.changed_at
        assert scopes.get_scope(result.scope.id).scope == result.scope

    def test_create_with_missing_parent_fails(self, scopes):
        result = scopes.create_scope("Orphan", "team", parent_id="missing")
        assert not result.success
        assert result.error == errors.PARENT_NOT_FOUND

    def test_create_with_branding(self, scopes):
        result = scopes.create_scope("Acme", "HQ", branding=Branding(primary_color="#112233", tagline=""))
        assert result.scope.primary_color == "#112233"
        assert result.scope.tagline is None

    def test_create_with_invalid_branding_writes_nothing(self, scopes):
        result = scopes.create_scope("Acme", "HQ", branding={"primary_color": "red"})
        assert result.error == "Invalid primary color format (use #RRGGBB)"
        assert scopes.get_all_scopes().scopes == []

    def test_get_missing_scope(self, scopes):
        result = scopes.get_scope("missing")
        assert not result.success
        assert result.error == errors.SCOPE_NOT_FOUND

    def test_get_scope_by_name_exact_match(self, scopes, company):
        assert scopes.get_scope_by_name("Sales").scope.id == company.sales.id
        assert scopes.get_scope_by_name("sales").error == errors.SCOPE_NOT_FOUND

    def test_get_all_scopes_filters_by_parent(self, scopes, company):
        assert len(scopes.get_all_scopes().scopes) == 6
        children = scopes.get_all_scopes(parent_id=company.company.id).scopes
        assert {s.name for s in children} == {"Engineering", "Sales"}
        assert [s.name for s in scopes.get_root_scopes().scopes] == ["Company"]


# ---------------------------------------------------------------------------
# TestUpdate
# ---------------------------------------------------------------------------


class TestUpdate:
    def test_partial_update_touches_only_given_fields(self, scopes):
        scope = scopes.create_scope("Acme", "HQ", branding={"tagline": "We build"}).scope
        result = scopes.update_scope(scope.id, name="Acme Ltd")
        assert result.success
        assert result.scope.name == "Acme Ltd"
        assert result.scope.level == "HQ"
        assert result.scope.tagline == "We build"

    def test_explicit_none_clears_branding_field(self, scopes):
        scope = scopes.create_scope("Acme", "HQ", branding={"tagline": "We build"}).scope
        assert scopes.update_scope(scope.id, tagline=None).scope.tagline is None

    def test_update_refreshes_changed_at(self, scopes):
        scope = scopes.create_scope("Acme", "HQ").scope
        with patch("hrbac.scopes._now_iso", return_value="2099-01-01T00:00:00+00:00"):
            updated = scopes.update_scope(scope.id, level="Group").scope
        assert updated.changed_at == "2099-01-01T00:00:00+00:00"
        assert updated.created_at == scope.created_at

    def test_update_missing_scope(self, scopes):
        assert scopes.update_scope("missing", name="X").error == errors.SCOPE_NOT_FOUND

    def test_unknown_fields_rejected(self, scopes, company):
        result = scopes.update_scope(company.sales.id, id="new-id", owner="bob")
        assert result.error == "Unknown fields: id, owner"

    def test_reparent_to_other_branch(self, scopes, company):
        result = scopes.update_scope(company.sales_ops.id, parent_id=company.engineering.id)
        assert result.success
        assert result.scope.parent_id == company.engineering.id

    def test_parent_none_makes_root(self, scopes, company):
        result = scopes.update_scope(company.sales.id, parent_id=None)
        assert result.scope.parent_id is None
        assert scopes.get_root_id(company.sales_ops.id) == company.sales.id

    def test_self_parent_rejected(self, scopes, company):
        result = scopes.update_scope(company.frontend.id, parent_id=company.frontend.id)
        assert result.error == errors.SELF_PARENT
        assert scopes.get_scope(company.frontend.id).scope.parent_id == company.engineering.id

    @pytest.mark.parametrize("descendant", ["frontend", "react"])
    def test_descendant_parent_rejected(self, scopes, company, descendant):
        """Moving a scope under anything in its own subtree would make a cycle."""
        target = getattr(company, descendant).id
        result = scopes.update_scope(company.engineering.id, parent_id=target)
        assert result.error == errors.DESCENDANT_PARENT
        assert scopes.get_scope(company.engineering.id).scope.parent_id == company.company.id

    def test_missing_parent_rejected(self, scopes, company):
        result = scopes.update_scope(company.sales.id, parent_id="missing")
        assert result.error == errors.PARENT_NOT_FOUND

    def test_invalid_branding_in_update_rejected(self, scopes, company):
        result = scopes.update_scope(company.company.id, secondary_color="#12345")
        assert result.error == "Invalid secondary color format (use #RRGGBB)"


# ---------------------------------------------------------------------------
# TestSystemScopes
# ---------------------------------------------------------------------------


class TestSystemScopes:
    @pytest.mark.parametrize("scope_id", [SUPER_ADMIN_SCOPE_ID, DEFAULT_SYSTEM_SCOPE_ID])
    @pytest.mark.parametrize("fields", [{"name": "Mine"}, {}, {"parent_id": None}, {"bogus": 1}])
    def test_update_always_rejected(self, scopes, scope_id, fields):
        scopes.ensure_system_scopes()
        result = scopes.update_scope(scope_id, **fields)
        assert result.error == errors.SYSTEM_SCOPE_IMMUTABLE

    @pytest.mark.parametrize("scope_id", [SUPER_ADMIN_SCOPE_ID, DEFAULT_SYSTEM_SCOPE_ID])
    def test_delete_always_rejected(self, scopes, scope_id):
        scopes.ensure_system_scopes()
        assert scopes.delete_scope(scope_id).error == errors.SYSTEM_SCOPE_IMMUTABLE
        assert scopes.get_scope(scope_id).success

    def test_ensure_is_idempotent(self, scopes):
        first = scopes.ensure_super_admin_scope()
        second = scopes.ensure_super_admin_scope()
        assert first.scope == second.scope
        assert first.scope.name == "Super Admin"
        assert len(scopes.get_root_scopes().scopes) == 1

    def test_ensure_system_scopes_creates_both(self, scopes):
        result = scopes.ensure_system_scopes()
        assert [s.id for s in result.scopes] == [SUPER_ADMIN_SCOPE_ID, DEFAULT_SYSTEM_SCOPE_ID]
        assert scopes.get_scope(DEFAULT_SYSTEM_SCOPE_ID).scope.level == "default"

    def test_helpers(self):
        assert is_system_scope(SUPER_ADMIN_SCOPE_ID)
        assert is_system_scope(DEFAULT_SYSTEM_SCOPE_ID)
        assert not is_system_scope("00000000-0000-0000-0000-000000000002")


# ---------------------------------------------------------------------------
# TestDelete
# ---------------------------------------------------------------------------


class TestDelete:
    def test_delete_returns_record_and_cascades(self, scopes, company):
        result = scopes.delete_scope(company.engineering.id)
        assert result.success
        assert result.scope.id == company.engineering.id
        for gone in (company.engineering, company.frontend, company.react):
            assert scopes.get_scope(gone.id).error == errors.SCOPE_NOT_FOUND
        assert scopes.get_scope(company.sales.id).success

    def test_delete_missing_scope(self, scopes):
        assert scopes.delete_scope("missing").error == errors.SCOPE_NOT_FOUND


# ---------------------------------------------------------------------------
# TestHierarchy
# ---------------------------------------------------------------------------


class TestHierarchy:
    def test_children(self, scopes, company):
        names = {s.name for s in scopes.get_children(company.company.id).scopes}
        assert names == {"Engineering", "Sales"}
        assert scopes.get_children(company.react.id).scopes == []

    def test_ancestors_ordered_parent_to_root(self, scopes, company):
        result = scopes.get_ancestors(company.react.id)
        assert [s.name for s in result.scopes] == ["Frontend", "Engineering", "Company"]

    def test_ancestors_of_root_empty(self, scopes, company):
        assert scopes.get_ancestors(company.company.id).scopes == []

    def test_ancestors_of_missing_scope(self, scopes):
        assert scopes.get_ancestors("missing").error == errors.SCOPE_NOT_FOUND

    def test_descendants_depth_first(self, scopes, company):
        """Each branch is listed whole, parents before their children."""
        names = [s.name for s in scopes.get_descendants(company.company.id).scopes]
        assert sorted(names) == ["Engineering", "Frontend", "ReactProject", "Sales", "SalesOps"]
        assert names.index("Engineering") < names.index("Frontend") < names.index("ReactProject")
        assert names.index("Sales") < names.index("SalesOps")
        eng = names.index("Engineering")
        assert names[eng : eng + 3] == ["Engineering", "Frontend", "ReactProject"]

    def test_descendants_of_leaf_and_unknown_are_empty(self, scopes, company):
        assert scopes.get_descendants(company.react.id).scopes == []
        assert scopes.get_descendants("missing").success

    def test_root_id(self, scopes, company):
        assert scopes.get_root_id(company.react.id) == company.company.id
        assert scopes.get_root_id(company.company.id) == company.company.id
        assert scopes.get_root_id("missing") is None

    def test_deep_tree_walks_without_recursion(self, scopes):
        """Walks are iterative; depth is not bounded by the interpreter stack."""
        parent = scopes.create_scope("L0", "level").scope
        root_id = parent.id
        for i in range(1, 1200):
            parent = scopes.create_scope(f"L{i}", "level", parent_id=parent.id).scope
        assert scopes.get_root_id(parent.id) == root_id
        assert len(scopes.get_descendants(root_id).scopes) == 1199


# ---------------------------------------------------------------------------
# TestCorruptHierarchy
# ---------------------------------------------------------------------------


class TestCorruptHierarchy:
    @pytest.fixture
    def loose(self):
        """HRBAC over a database without FK enforcement, so broken links can
        be written directly."""
        database = Database("sqlite:///:memory:", sqlite_wal=False, enforce_foreign_keys=False)
        yield HRBAC(database)
        database.close()

    def _raw(self, hrbac, scope_id, parent_id):
        now = "2024-01-01T00:00:00+00:00"
        hrbac.db.scopes.insert(
            {"id": scope_id, "name": scope_id, "level": "x", "parent_id": parent_id, "created_at": now, "changed_at": now}
        )

    def test_dangling_parent_truncates_walk(self, loose, caplog):
        self._raw(loose, "child", "ghost")
        with caplog.at_level(logging.WARNING, logger="hrbac.scopes"):
            result = loose.scopes.get_ancestors("child")
        assert result.success
        assert result.scopes == []
        assert loose.scopes.get_root_id("child") == "child"
        assert "missing parent ghost" in caplog.text

    def test_cycle_stops_walks(self, loose, caplog):
        self._raw(loose, "a", "b")
        self._raw(loose, "b", "a")
        with caplog.at_level(logging.WARNING, logger="hrbac.scopes"):
            ancestors = loose.scopes.get_ancestors("a")
            descendants = loose.scopes.get_descendants("a")
        assert [s.id for s in ancestors.scopes] == ["b"]
        assert [s.id for s in descendants.scopes] == ["b"]
        assert "Cycle in scope hierarchy" in caplog.text


# ---------------------------------------------------------------------------
# TestScopeTree
# ---------------------------------------------------------------------------


class TestScopeTree:
    def test_tree_from_root(self, scopes, company):
        result = scopes.get_scope_tree(company.engineering.id)
        assert len(result.tree) == 1
        node = result.tree[0]
        assert node.scope.name == "Engineering"
        assert [c.scope.name for c in node.children] == ["Frontend"]
        assert [c.scope.name for c in node.children[0].children] == ["ReactProject"]

    def test_full_tree_excludes_system_scopes(self, scopes, company):
        scopes.ensure_system_scopes()
        tree = scopes.get_scope_tree().tree
        assert [n.scope.name for n in tree] == ["Company"]
        assert {c.scope.name for c in tree[0].children} == {"Engineering", "Sales"}

    def test_missing_root(self, scopes):
        assert scopes.get_scope_tree("missing").error == errors.ROOT_NOT_FOUND


# ---------------------------------------------------------------------------
# TestBrandingHelpers
# ---------------------------------------------------------------------------


class TestBrandingHelpers:
    def test_extract_branding_none_when_unset(self, scopes, company):
        assert not has_branding(company.company)
        assert extract_branding(company.company) is None

    def test_extract_branding_only_set_fields(self, scopes):
        scope = scopes.create_scope("Acme", "HQ", branding={"logo_url": "https://x/logo.png"}).scope
        assert extract_branding(scope) == Branding(logo_url="https://x/logo.png")


# ---------------------------------------------------------------------------
# TestStorageFailures
# ---------------------------------------------------------------------------


class TestStorageFailures:
    def test_get_scope_sanitizes_error(self, scopes, db, storage_error, caplog):
        with patch.object(db.scopes, "find_by", side_effect=storage_error):
            with caplog.at_level(logging.ERROR, logger="hrbac.scopes"):
                result = scopes.get_scope("s1")
        assert not result.success
        assert result.error == errors.GENERIC_ERROR
        assert "secret.db" not in result.error
        assert "get_scope failed" in caplog.text
        assert "scope_id='s1'" in caplog.text

    def test_create_scope_insert_failure(self, scopes, db, storage_error):
        with patch.object(db.scopes, "insert", side_effect=storage_error):
            result = scopes.create_scope("Acme", "HQ")
        assert result.error == errors.GENERIC_ERROR

    def test_update_scope_write_failure(self, scopes, db, company, storage_error):
        with patch.object(db.scopes, "update_by_id", side_effect=storage_error):
            result = scopes.update_scope(company.sales.id, name="X")
        assert result.error == errors.GENERIC_ERROR

    def test_descendants_failure(self, scopes, db, storage_error):
        with patch.object(db.scopes, "find_by", side_effect=storage_error):
            assert scopes.get_descendants("s1").error == errors.GENERIC_ERROR
            assert scopes.get_scope_tree().error == errors.GENERIC_ERROR
            assert scopes.get_root_id("s1") is None

    def test_update_returning_no_rows(self, scopes, db, company):
        with patch.object(db.scopes, "update_by_id", return_value=[]):
            result = scopes.update_scope(company.sales.id, name="X")
        assert result.error == errors.UPDATE_SCOPE_FAILED
