"""
hrbac/branding.py -- Branding Resolver: a scope's display identity and its
inheritance from the firm root.

Branding is stored on the scope row itself (logo_url, primary_color,
secondary_color, tagline). Inheritance is a single hop: a scope with no
branding of its own shows its root's own branding, never a middle ancestor's.
In practice only roots are branded, but any non-system scope may be.

Writes go through ScopeStore.update_scope so the system-scope guard and the
changed_at refresh are applied in one place.
"""

import logging
from typing import Optional

from core import errors
from core.models import BRANDING_FIELDS, Branding
from core.results import BrandingResult
from hrbac.scopes import ScopeStore, branding_fields, extract_branding, is_system_scope
from hrbac.validation import validate_branding

logger = logging.getLogger("hrbac.branding")


class BrandingResolver:
    def __init__(self, scopes: ScopeStore) -> None:
        self.scopes = scopes

    def get_own_branding(self, scope_id: str) -> BrandingResult:
        """The scope's own branding without inheritance (None when unset)."""
        result = self.scopes.get_scope(scope_id)
        if not result.success:
            return BrandingResult.fail(result.error)
        return BrandingResult(success=True, branding=extract_branding(result.scope), scope=result.scope)

    def get_effective_branding(self, scope_id: str) -> BrandingResult:
        """Own branding if set, else the root's own branding.

        A root without branding resolves to None. .scope is always the scope
        asked about, not the root the branding came from.
        """
        result = self.scopes.get_scope(scope_id)
        if not result.success:
            return BrandingResult.fail(result.error)
        scope = result.scope

        own = extract_branding(scope)
        if own is not None or scope.parent_id is None:
            return BrandingResult(success=True, branding=own, scope=scope)

        root = self.scopes.get_root_scope(scope_id)
        if not root.success:
            return BrandingResult.fail(root.error)
        if root.scope.id == scope.id:
            # Dangling parent: the walk stopped at the scope itself.
            return BrandingResult(success=True, branding=None, scope=scope)
        return BrandingResult(success=True, branding=extract_branding(root.scope), scope=scope)

    def get_firm_branding(self, scope_id: str) -> BrandingResult:
        """Own branding of the root of scope_id's tree; .scope is that root.

        An unknown scope_id has no firm, which is not an error.
        """
        root = self.scopes.get_root_scope(scope_id)
        if not root.success:
            if root.error == errors.SCOPE_NOT_FOUND:
                return BrandingResult(success=True)
            return BrandingResult.fail(root.error)
        return BrandingResult(success=True, branding=extract_branding(root.scope), scope=root.scope)

    def update_branding(self, scope_id: str, **data) -> BrandingResult:
        """Merge the given branding fields into the scope's current branding.

        A field passed as None or "" is cleared; omitted fields are kept.
        """
        if is_system_scope(scope_id):
            return BrandingResult.fail(errors.SYSTEM_SCOPE_BRANDING)
        unknown = set(data) - set(BRANDING_FIELDS)
        if unknown:
            return BrandingResult.fail(errors.unknown_fields(unknown))
        invalid = validate_branding(data)
        if invalid:
            return BrandingResult.fail(invalid)

        current = self.scopes.get_scope(scope_id)
        if not current.success:
            return BrandingResult.fail(current.error)
        merged = {name: data[name] if name in data else getattr(current.scope, name) for name in BRANDING_FIELDS}
        return self._write(scope_id, branding_fields(merged))

    def replace_branding(self, scope_id: str, branding: Optional[Branding]) -> BrandingResult:
        """Overwrite all four fields. Fields missing from branding become None;
        branding=None clears everything."""
        if is_system_scope(scope_id):
            return BrandingResult.fail(errors.SYSTEM_SCOPE_BRANDING)
        fields = branding_fields(branding)
        invalid = validate_branding(fields)
        if invalid:
            return BrandingResult.fail(invalid)
        return self._write(scope_id, fields)

    def clear_branding(self, scope_id: str) -> BrandingResult:
        return self.replace_branding(scope_id, None)

    def _write(self, scope_id: str, fields: dict) -> BrandingResult:
        result = self.scopes.update_scope(scope_id, **fields)
        if not result.success:
            return BrandingResult.fail(result.error)
        logger.debug("Branding updated for scope %s", scope_id)
        return BrandingResult(success=True, branding=extract_branding(result.scope), scope=result.scope)
