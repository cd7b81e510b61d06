"""Encrypted backup and restore service.

Backup format (one JSON document per ``.enc`` file):
    {
        "version": "1.0",
        "timestamp": <epoch milliseconds>,
        "type": "restore_point",      # absent for full backups
        "iv": "<hex>",
        "authTag": "<hex>",
        "data": "<hex ciphertext>"
    }

The ciphertext is AES-256-GCM over a JSON snapshot of every entity
collection. The header is never encrypted so listings do not need the key.
"""

import asyncio
import base64
import contextlib
import json
import logging
import os
import re
import tempfile
import uuid
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any
from uuid import UUID

from backoffice_api.config import Settings, get_settings
from backoffice_api.exceptions import (
    BackofficeAPIError,
    BackupError,
    BackupNotFoundError,
    ValidationError,
    VersionMismatchError,
)
from backoffice_api.models.dto.backup import (
    BackupInfo,
    BackupInfoResponse,
    BackupType,
    RestoreResponse,
)
from backoffice_api.repositories.storage import (
    BusinessStorage,
    EntityCollection,
    get_storage,
)
from backoffice_api.security.encryption import (
    EncryptionEnvelope,
    EncryptionService,
    get_encryption_service,
)
from backoffice_api.utils.secure_logging import log_error, log_warning, sanitize_exception_message
from backoffice_api.utils.security_events import SecurityEventType, log_security_event

logger = logging.getLogger(__name__)

BACKUP_VERSION = "1.0"
BACKUP_SUFFIX = ".enc"

FILENAME_PREFIXES = {
    BackupType.FULL: "full-backup",
    BackupType.RESTORE_POINT: "restore-point",
}

# full-backup-2026-10-19T03-00-00-000Z-1a2b3c4d.enc
FILENAME_PATTERN = re.compile(
    r"^(full-backup|restore-point)-\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{3}Z-[0-9a-f]{8}\.enc$"
)


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _from_millis(timestamp_ms: int) -> datetime:
    return EPOCH + timedelta(milliseconds=timestamp_ms)


class BackupService:
    """Service for creating, listing, restoring and pruning encrypted backups."""

    def __init__(
        self,
        storage: BusinessStorage,
        encryption: EncryptionService | None = None,
        backup_dir: str | Path | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.storage = storage
        self.encryption = encryption or get_encryption_service()
        self.settings = settings or get_settings()
        self.backup_dir = Path(backup_dir or self.settings.backup_dir)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_timestamp_ms = 0

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_full_backup(
        self,
        user_id: int | None = None,
        ip_address: str | None = None,
    ) -> str:
        """Snapshot all collections into a new encrypted backup.

        Retention cleanup runs after the file is written.

        Args:
            user_id: User who triggered the backup (None for scheduled runs)
            ip_address: Client IP address

        Returns:
            Filename of the new backup

        Raises:
            BackupError: If the snapshot cannot be written
        """
        async with self._lock:
            try:
                filename = await self._create(BackupType.FULL)
            except BackupError as e:
                log_security_event(
                    SecurityEventType.BACKUP,
                    user_id=user_id,
                    ip_address=ip_address,
                    details={"action": "backup_failed", "error": e.message},
                    success=False,
                )
                raise

            log_security_event(
                SecurityEventType.BACKUP,
                user_id=user_id,
                ip_address=ip_address,
                details={"action": "backup_created", "filename": filename},
            )
            self._cleanup()

        return filename

    async def create_restore_point(self) -> str:
        """Snapshot all collections as a restore point. No cleanup is run.

        Returns:
            Filename of the restore point

        Raises:
            BackupError: If the snapshot cannot be written
        """
        async with self._lock:
            return await self._create(BackupType.RESTORE_POINT)

    async def _create(self, backup_type: BackupType) -> str:
        timestamp_ms = self._next_timestamp_ms()
        created_at = _from_millis(timestamp_ms)
        filename = self._make_filename(backup_type, created_at)

        try:
            payload = await self._snapshot(created_at)
            plaintext = json.dumps(payload, default=self._json_serializer, separators=(",", ":"))
            envelope = self.encryption.encrypt(plaintext)

            document: dict[str, Any] = {
                "version": BACKUP_VERSION,
                "timestamp": timestamp_ms,
            }
            if backup_type == BackupType.RESTORE_POINT:
                document["type"] = backup_type.value
            document.update(envelope.to_hex())

            self._write_atomic(self.backup_dir / filename, json.dumps(document))
        except Exception as e:
            log_error(logger, f"Failed to create {backup_type.value} backup", e)
            raise BackupError(
                "Failed to create backup", {"error": sanitize_exception_message(e)}
            ) from e

        logger.info(f"Created {backup_type.value} backup {filename}")
        return filename

    async def _snapshot(self, created_at: datetime) -> dict[str, Any]:
        """Collect every entity collection for all users."""
        return {
            "timestamp": created_at.isoformat(),
            "version": BACKUP_VERSION,
            EntityCollection.CLIENTS.value: await self.storage.get_clients(),
            EntityCollection.EMPLOYEES.value: await self.storage.get_employees(),
            EntityCollection.INVOICES.value: await self.storage.get_invoices(),
            EntityCollection.EXPENSES.value: await self.storage.get_expenses(),
            EntityCollection.INVENTORY.value: await self.storage.get_inventory_items(),
            EntityCollection.CONTRACTS.value: await self.storage.get_contracts(),
            EntityCollection.TIME_ENTRIES.value: await self.storage.get_time_entries(),
        }

    def _next_timestamp_ms(self) -> int:
        """Current epoch milliseconds, strictly increasing across calls."""
        now_ms = (self._clock() - EPOCH) // timedelta(milliseconds=1)
        now_ms = max(now_ms, self._last_timestamp_ms + 1)
        self._last_timestamp_ms = now_ms
        return now_ms

    @staticmethod
    def _make_filename(backup_type: BackupType, created_at: datetime) -> str:
        stamp = created_at.strftime("%Y-%m-%dT%H-%M-%S") + f"-{created_at.microsecond // 1000:03d}Z"
        return f"{FILENAME_PREFIXES[backup_type]}-{stamp}-{uuid.uuid4().hex[:8]}{BACKUP_SUFFIX}"

    def _write_atomic(self, path: Path, content: str) -> None:
        """Write a file so readers only ever see the complete content."""
        self.backup_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.backup_dir, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)
            raise

    def _json_serializer(self, obj: Any) -> Any:
        """Custom JSON serializer for special types."""
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, date):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, bytes):
            return base64.b64encode(obj).decode("utf-8")
        raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")

    # =========================================================================
    # Restore
    # =========================================================================

    async def restore_from_backup(self, filename: str) -> bool:
        """Replace all stored data with the contents of a backup.

        Args:
            filename: Name of a backup in the backup directory

        Returns:
            True once the data has been applied

        Raises:
            BackupNotFoundError: If the file does not exist
            VersionMismatchError: If the backup format is not supported
            IntegrityError: If decryption fails
            ValidationError: If the payload is malformed
            BackupError: If the restore point or the apply step fails
        """
        result = await self.restore(filename)
        return result.success

    async def restore(
        self,
        filename: str,
        user_id: int | None = None,
        ip_address: str | None = None,
    ) -> RestoreResponse:
        """Restore a backup, first saving current data as a restore point.

        The file is fully validated and decrypted before anything changes.
        Data is applied in a single storage transaction, so a failure
        leaves the previous data in place.

        Args:
            filename: Name of a backup in the backup directory
            user_id: User who requested the restore
            ip_address: Client IP address

        Returns:
            RestoreResponse naming the restore point and restored counts

        Raises:
            See :meth:`restore_from_backup`.
        """
        async with self._lock:
            restore_point = None
            try:
                path = self._resolve(filename)
                if not path.is_file():
                    raise BackupNotFoundError(filename)

                payload = self._load_payload(path)
                restore_point = await self._create(BackupType.RESTORE_POINT)

                async with self.storage.transaction():
                    for collection in EntityCollection:
                        await self.storage.replace_all(collection, payload[collection.value])
            except BackofficeAPIError as e:
                self._log_restore(filename, restore_point, user_id, ip_address, error=e.message)
                raise
            except Exception as e:
                log_error(logger, f"Failed to restore backup {filename}", e)
                self._log_restore(filename, restore_point, user_id, ip_address, error="apply_failed")
                raise BackupError("Failed to restore backup") from e

        restored = {c.value: len(payload[c.value]) for c in EntityCollection}
        self._log_restore(filename, restore_point, user_id, ip_address)
        logger.info(f"Restored backup {filename} (restore point {restore_point})")

        return RestoreResponse(
            success=True,
            filename=filename,
            restore_point=restore_point,
            restored=restored,
        )

    def _load_payload(self, path: Path) -> dict[str, Any]:
        """Read, version-check, decrypt and validate a backup file."""
        document = self._read_document(path)

        found = document.get("version")
        if found != BACKUP_VERSION:
            raise VersionMismatchError(str(found) if found is not None else None, BACKUP_VERSION)

        envelope = EncryptionEnvelope.from_hex(document)
        plaintext = self.encryption.decrypt(envelope)

        try:
            payload = json.loads(plaintext)
        except json.JSONDecodeError as e:
            raise ValidationError("Invalid backup payload") from e

        self._validate_payload(payload)
        return payload

    def _validate_payload(self, payload: Any) -> None:
        """Validate snapshot structure before any data is touched.

        Raises:
            VersionMismatchError: If the payload version is not supported
            ValidationError: If a collection is missing or malformed
        """
        if not isinstance(payload, dict):
            raise ValidationError("Invalid backup payload")

        found = payload.get("version")
        if found != BACKUP_VERSION:
            raise VersionMismatchError(str(found) if found is not None else None, BACKUP_VERSION)

        for collection in EntityCollection:
            records = payload.get(collection.value)
            if not isinstance(records, list):
                raise ValidationError(
                    "Invalid backup payload", {"collection": collection.value}
                )
            if not all(isinstance(record, dict) for record in records):
                raise ValidationError(
                    "Invalid backup record", {"collection": collection.value}
                )

    def _log_restore(
        self,
        filename: str,
        restore_point: str | None,
        user_id: int | None,
        ip_address: str | None,
        error: str | None = None,
    ) -> None:
        details: dict[str, Any] = {"filename": filename, "restore_point": restore_point}
        if error:
            details["error"] = error
        log_security_event(
            SecurityEventType.RESTORE,
            user_id=user_id,
            ip_address=ip_address,
            details=details,
            success=error is None,
        )

    # =========================================================================
    # Listing
    # =========================================================================

    async def list_backups(self) -> list[BackupInfo]:
        """List stored backups from their unencrypted headers.

        Returns:
            BackupInfo entries, newest first
        """
        return self._scan()

    async def get_backup_info(self, filename: str) -> BackupInfoResponse:
        """Get information about a backup without decrypting it.

        Args:
            filename: Name of a backup in the backup directory

        Returns:
            BackupInfoResponse; ``valid_format`` is False for unreadable files

        Raises:
            BackupNotFoundError: If the file does not exist
        """
        path = self._resolve(filename)
        if not path.is_file():
            raise BackupNotFoundError(filename)

        try:
            document = self._read_document(path)
            info = self._info_from_document(path, document)
        except (OSError, ValidationError) as e:
            log_warning(logger, f"Unreadable backup {filename}", e)
            return BackupInfoResponse(
                filename=filename,
                valid_format=False,
                error="Invalid backup file format",
            )

        return BackupInfoResponse(
            filename=filename,
            valid_format=True,
            version=str(document.get("version")),
            type=info.type,
            created_at=info.created_at,
            size_bytes=info.size_bytes,
        )

    def _scan(self) -> list[BackupInfo]:
        if not self.backup_dir.is_dir():
            return []

        backups: list[BackupInfo] = []
        for path in self.backup_dir.iterdir():
            if not FILENAME_PATTERN.match(path.name) or not path.is_file():
                continue
            try:
                backups.append(self._info_from_document(path, self._read_document(path)))
            except (OSError, ValidationError) as e:
                log_warning(logger, f"Skipping unreadable backup {path.name}", e)

        backups.sort(key=lambda b: (b.created_at, b.filename), reverse=True)
        return backups

    def _read_document(self, path: Path) -> dict[str, Any]:
        """Parse a backup file's JSON document.

        Raises:
            ValidationError: If the file is not a JSON object
        """
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError("Invalid backup file format") from e

        if not isinstance(document, dict):
            raise ValidationError("Invalid backup file format")
        return document

    def _info_from_document(self, path: Path, document: dict[str, Any]) -> BackupInfo:
        timestamp = document.get("timestamp")
        if not isinstance(timestamp, int) or isinstance(timestamp, bool):
            raise ValidationError("Invalid backup file format")

        try:
            backup_type = BackupType(document.get("type", BackupType.FULL.value))
        except ValueError as e:
            raise ValidationError("Invalid backup file format") from e

        return BackupInfo(
            filename=path.name,
            type=backup_type,
            created_at=_from_millis(timestamp),
            size_bytes=path.stat().st_size,
        )

    def _resolve(self, filename: str) -> Path:
        """Map a filename to a path inside the backup directory.

        Raises:
            BackupNotFoundError: If the name is not a backup filename
        """
        if not FILENAME_PATTERN.match(filename or ""):
            logger.warning("Rejected invalid backup filename")
            raise BackupNotFoundError()
        return self.backup_dir / filename

    # =========================================================================
    # Deletion and retention
    # =========================================================================

    async def delete_backup(self, filename: str) -> bool:
        """Delete a backup file.

        Returns:
            True if deleted, False if the file did not exist
        """
        try:
            path = self._resolve(filename)
        except BackupNotFoundError:
            return False

        async with self._lock:
            deleted = self._unlink(path)

        if not deleted:
            logger.warning(f"Backup {filename} already deleted")
        return deleted

    async def cleanup_old_backups(self) -> list[str]:
        """Apply the retention policy.

        Returns:
            Filenames that were deleted
        """
        async with self._lock:
            return self._cleanup()

    def _cleanup(self) -> list[str]:
        backups = self._scan()
        now = self._clock()
        restore_point_cutoff = now - timedelta(days=self.settings.restore_point_retention_days)
        retention_cutoff = now - timedelta(days=self.settings.backup_retention_days)

        expired: set[str] = set()

        full_backups = [b for b in backups if b.type == BackupType.FULL]
        expired.update(b.filename for b in full_backups[self.settings.backup_max_count :])

        for backup in backups:
            if backup.type == BackupType.RESTORE_POINT and backup.created_at < restore_point_cutoff:
                expired.add(backup.filename)
            if backup.created_at < retention_cutoff:
                expired.add(backup.filename)

        deleted = [name for name in sorted(expired) if self._unlink(self.backup_dir / name)]
        if deleted:
            logger.info(f"Retention cleanup removed {len(deleted)} backup(s)")
        return deleted

    def _unlink(self, path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            log_warning(logger, f"Failed to delete backup {path.name}", e)
            return False
        return True


# Global instance
_backup_service: BackupService | None = None


def get_backup_service() -> BackupService:
    """Get or create the backup service singleton."""
    global _backup_service
    if _backup_service is None:
        _backup_service = BackupService(get_storage())
    return _backup_service


def reset_backup_service() -> None:
    """Reset the backup service singleton (for testing)."""
    global _backup_service
    _backup_service = None
