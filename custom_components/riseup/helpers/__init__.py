"""Home Assistant-aware helpers for RiseUp.

Submodules:
    - backup_helpers: Backup files under .storage/ (write, discover, prune, read)
"""

from . import backup_helpers

__all__ = ["backup_helpers"]
