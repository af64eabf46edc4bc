"""
Storage backend for backup archives.

Archives live flat in a single storage root (often a network share):
{base_path}/{volume_name}_{timestamp}.tar.gz
"""

import os
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional

from flask import current_app

from volbackup.utils.clock import utcnow
from .errors import ConfigurationError, StorageError, StorageUnavailableError

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSION = '.tar.gz'


class LocalStorage:
    """
    Handler for archives kept in a directory tree.

    Distinguishes "not found" (reported as a falsy result) from every other
    filesystem error (raised as StorageError).
    """

    def __init__(self, base_path: str, create: bool = True):
        """
        Initialize storage handler.

        Args:
            base_path: Storage root for archives
            create: Create the root if it does not exist yet

        Raises:
            ConfigurationError: If base_path is empty
            StorageUnavailableError: If the root cannot be created
        """
        if not base_path:
            raise ConfigurationError("Backup storage path not configured")

        self.base_path = Path(base_path)

        if create:
            try:
                self.base_path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageUnavailableError(f"Failed to create storage directory {self.base_path}: {e}")

    def archive_path_for(self, volume_name: str, when: Optional[datetime] = None) -> str:
        """
        Compute the archive path for a new backup of a volume.

        Format: {base_path}/{volume_name}_{YYYY-MM-DDTHH-MM-SS-mmmZ}.tar.gz
        """
        when = when or utcnow()
        timestamp = when.isoformat(timespec='milliseconds').replace(':', '-').replace('.', '-') + 'Z'

        # Keep the name on a single path component
        safe_name = "".join(
            c if c.isalnum() or c in ('-', '_', '.') else '_'
            for c in volume_name
        ).strip('.') or 'volume'

        return str(self.base_path / f"{safe_name}_{timestamp}{ARCHIVE_EXTENSION}")

    def list_archives(self) -> List[Dict[str, Any]]:
        """
        List archive files physically present in the storage root.

        Returns:
            List of dicts with 'path', 'modified' and 'size' keys

        Raises:
            StorageUnavailableError: If the root cannot be listed
        """
        try:
            entries = list(os.scandir(self.base_path))
        except OSError as e:
            raise StorageUnavailableError(f"Cannot list storage root {self.base_path}: {e}")

        archives = []
        for entry in entries:
            if not entry.name.endswith(ARCHIVE_EXTENSION):
                continue
            try:
                if not entry.is_file():
                    continue
                stat = entry.stat()
            except FileNotFoundError:
                # Removed between listing and stat
                continue
            except OSError as e:
                raise StorageUnavailableError(f"Cannot stat {entry.path}: {e}")

            archives.append({
                'path': str(self.base_path / entry.name),
                'modified': datetime.fromtimestamp(stat.st_mtime, timezone.utc).replace(tzinfo=None),
                'size': stat.st_size
            })

        return archives

    def exists(self, path: str) -> bool:
        """
        Check whether an archive is present.

        Raises:
            StorageError: If presence cannot be determined
        """
        try:
            os.stat(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Cannot stat {path}: {e}")

    def size(self, path: str) -> int:
        """
        Size of an archive in bytes.

        Raises:
            StorageError: If the file is missing or cannot be accessed
        """
        try:
            return os.path.getsize(path)
        except FileNotFoundError:
            raise StorageError(f"Archive not found: {path}")
        except OSError as e:
            raise StorageError(f"Failed to get archive size: {e}")

    def delete(self, path: str) -> bool:
        """
        Delete an archive.

        Returns:
            True if a file was removed, False if it was already absent

        Raises:
            StorageError: If deletion fails for any other reason
        """
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to delete archive {path}: {e}")


def get_storage(create: bool = True) -> LocalStorage:
    """Storage handler for the configured storage root of the current app."""
    return LocalStorage(current_app.config.get('BACKUP_STORAGE_PATH'), create=create)
