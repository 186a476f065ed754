"""File-based persistence of non-secret session metadata.

Storage location: ``<app_dir>/session.json``

The metadata record never contains a token: the refresh token lives in
the secret vault and the access token only in memory. Older builds wrote
a combined record with secrets to ``<app_dir>/tokens.json``; that file is
read here only so it can be migrated and removed.

Security considerations:
- The application directory is created with mode 0700
- The metadata file is written with mode 0600 via temp-file-then-rename
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from inbox_auth.auth.models import LegacySession, SessionMetadata
from inbox_auth.utils.errors import StorageError

logger = logging.getLogger(__name__)

METADATA_FILENAME = "session.json"
LEGACY_FILENAME = "tokens.json"


class SessionMetadataStore:
    """Single-record JSON store for :class:`SessionMetadata`.

    Example:
        >>> store = SessionMetadataStore(Path("~/.inbox-auth").expanduser())
        >>> store.save(metadata)
        >>> store.load().email
        'user@example.com'
    """

    def __init__(self, app_dir: Path) -> None:
        """Initialize the store, creating the application directory.

        Args:
            app_dir: Application-private data directory.

        Raises:
            StorageError: If the directory cannot be created.
        """
        self._app_dir = app_dir
        try:
            self._app_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                "Failed to create application data directory",
                details={"path": str(app_dir), "error": str(e)},
            ) from e
        logger.debug("SessionMetadataStore initialized at %s", self._app_dir)

    @property
    def path(self) -> Path:
        """Location of the metadata file."""
        return self._app_dir / METADATA_FILENAME

    @property
    def legacy_path(self) -> Path:
        """Location of the pre-vault combined token file."""
        return self._app_dir / LEGACY_FILENAME

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> SessionMetadata | None:
        """Load the metadata record.

        Malformed content (undecodable bytes, invalid JSON, missing
        fields) is treated as absent: the file is deleted, not repaired.

        Returns:
            The stored metadata, or None if there is none (or it was
            malformed).

        Raises:
            StorageError: If the file exists but cannot be read.
        """
        if not self.path.exists():
            logger.debug("No session metadata at %s", self.path)
            return None

        try:
            raw = self.path.read_bytes()
        except OSError as e:
            logger.error("Failed to read session metadata: %s", e)
            raise StorageError(
                "Failed to read session metadata",
                details={"path": str(self.path), "error": str(e)},
            ) from e

        try:
            return SessionMetadata.model_validate_json(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValidationError) as e:
            logger.warning(
                "Discarding malformed session metadata (%s)", type(e).__name__
            )
            self.delete()
            return None

    def save(self, metadata: SessionMetadata) -> None:
        """Overwrite the metadata record atomically.

        Raises:
            StorageError: If the file cannot be written.
        """
        tmp_path: Path | None = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f"{METADATA_FILENAME}.", suffix=".tmp", dir=self._app_dir
            )
            tmp_path = Path(tmp_name)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(metadata.model_dump_json(indent=2))
            # Restrict permissions to owner read/write only (0600)
            tmp_path.chmod(0o600)
            os.replace(tmp_path, self.path)
            logger.debug("Saved session metadata for %s", metadata.email)

        except OSError as e:
            logger.error("Failed to save session metadata: %s", e)
            raise StorageError(
                "Failed to save session metadata",
                details={"path": str(self.path), "error": str(e)},
            ) from e
        finally:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink()

    def delete(self) -> bool:
        """Delete the metadata record.

        Returns:
            True if a file was deleted, False if none existed.

        Raises:
            StorageError: If the file exists but cannot be removed.
        """
        return _unlink(self.path)

    # =========================================================================
    # Legacy combined file
    # =========================================================================

    def load_legacy(self) -> LegacySession | None:
        """Read the legacy combined record, if present.

        Malformed content is treated as absent and the file is deleted,
        the same way :meth:`load` treats malformed metadata.

        Returns:
            The parsed record, or None if there is none.

        Raises:
            StorageError: If the file exists but cannot be read.
        """
        if not self.legacy_path.exists():
            return None

        try:
            raw = self.legacy_path.read_bytes()
        except OSError as e:
            raise StorageError(
                "Failed to read legacy token file",
                details={"path": str(self.legacy_path), "error": str(e)},
            ) from e

        try:
            return LegacySession.model_validate_json(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValidationError) as e:
            logger.warning(
                "Discarding malformed legacy token file (%s)", type(e).__name__
            )
            self.delete_legacy()
            return None

    def delete_legacy(self) -> bool:
        """Delete the legacy combined file."""
        return _unlink(self.legacy_path)


def _unlink(path: Path) -> bool:
    if not path.exists():
        return False

    try:
        path.unlink()
        logger.debug("Deleted %s", path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.error("Failed to delete %s: %s", path, e)
        raise StorageError(
            f"Failed to delete {path.name}",
            details={"path": str(path), "error": str(e)},
        ) from e


__all__ = [
    "METADATA_FILENAME",
    "LEGACY_FILENAME",
    "SessionMetadataStore",
]
