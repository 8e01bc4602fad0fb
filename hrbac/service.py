"""
hrbac/service.py -- HRBAC facade: every service wired to one Database.

The host application builds one HRBAC at startup (from_settings() or with its
own Database), calls bootstrap() once, and hands the instance to whatever
handles requests.

    hrbac = HRBAC.from_settings()
    hrbac.bootstrap()
    hrbac.firms.create_firm("user-1", "Acme", "Headquarters")
    hrbac.access.check_access("user-1", some_scope_id).has_access
"""

import logging
from typing import Optional

from hrbac.access import AccessResolver
from hrbac.assignments import UserScopeStore
from hrbac.branding import BrandingResolver
from hrbac.firms import FirmService
from hrbac.scopes import ScopeStore
from storage.database import Database

logger = logging.getLogger("hrbac.service")


class HRBAC:
    def __init__(self, db: Database) -> None:
        self.db = db
        self.scopes = ScopeStore(db)
        self.branding = BrandingResolver(self.scopes)
        self.user_scopes = UserScopeStore(db, self.scopes)
        self.access = AccessResolver(self.scopes, self.user_scopes)
        self.firms = FirmService(db, self.scopes, self.user_scopes)

    @classmethod
    def from_settings(cls, db_url: Optional[str] = None) -> "HRBAC":
        """Build over a new Database; db_url overrides HRBAC_DATABASE_URL."""
        return cls(Database(db_url))

    def bootstrap(self) -> bool:
        """Ensure both reserved scopes and the owner role exist.

        Safe to call on every startup. Returns False (and logs) if any of
        them could not be ensured.
        """
        scopes = self.scopes.ensure_system_scopes()
        if not scopes.success:
            logger.error("Bootstrap failed: system scopes unavailable (%s)", scopes.error)
            return False
        role = self.firms.ensure_owner_role()
        if not role.success:
            logger.error("Bootstrap failed: owner role unavailable (%s)", role.error)
            return False
        logger.info("HRBAC bootstrap complete")
        return True

    def close(self) -> None:
        self.db.close()
