"""
Guest and authenticated identities.
"""

from focusup.identity.migration import IdentityMigrationService
from focusup.identity.store import IdentityStore, ProfileImageStore, new_guest_id

__all__ = ["IdentityMigrationService", "IdentityStore", "ProfileImageStore", "new_guest_id"]
