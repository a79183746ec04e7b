"""
Tenant document repository.

One JSON file per tenant under ``<data_dir>/tenants``. Secret fields are
unwrapped on load and wrapped on save through the SecretCodec, so callers
only ever see plaintext and the disk only ever holds envelopes.

Writers go through ``transaction()``, which holds a per-tenant lock for the
whole load/modify/save cycle. Locks are sharded by tenant id; two tenants
never contend.
"""

import asyncio
import json
import os
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from .audit_logger import AuditLogger
from .exceptions import PersistenceError, ValidationError
from .models import TenantDocument
from .secret_codec import SecretCodec

_TENANT_ID_RE = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")


class TenantStore:
    """Loads and saves tenant documents with per-tenant write serialization."""

    def __init__(
        self,
        data_dir: Path,
        codec: SecretCodec,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._dir = Path(data_dir) / "tenants"
        self._codec = codec
        self._logger = logger
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def directory(self) -> Path:
        return self._dir

    def _path_for(self, tenant_id: str) -> Path:
        if not tenant_id or not _TENANT_ID_RE.match(tenant_id) or tenant_id in (".", ".."):
            raise ValidationError(
                code="invalid_tenant_id",
                message=f"Invalid tenant id: {tenant_id!r}",
            )
        return self._dir / f"{tenant_id}.json"

    def _lock_for(self, tenant_id: str) -> asyncio.Lock:
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[tenant_id] = lock
        return lock

    def list_tenants(self) -> list[str]:
        if not self._dir.exists():
            return []
        return sorted(p.stem for p in self._dir.glob("*.json"))

    def exists(self, tenant_id: str) -> bool:
        return self._path_for(tenant_id).exists()

    def load(self, tenant_id: str) -> TenantDocument:
        """
        Read a tenant document; a missing file reads as an empty document.

        Raises:
            PersistenceError: If the file cannot be read or parsed
        """
        path = self._path_for(tenant_id)
        if not path.exists():
            return TenantDocument()
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Failed to parse tenant document: {e}",
                details={"tenant_id": tenant_id, "file_path": str(path)},
            ) from e
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read tenant document: {e}",
                details={"tenant_id": tenant_id, "file_path": str(path)},
            ) from e
        if not isinstance(raw, dict):
            raise PersistenceError(
                code="parse_error",
                message="Tenant document is not a JSON object",
                details={"tenant_id": tenant_id, "file_path": str(path)},
            )
        return TenantDocument.from_dict(self._codec.decrypt_document(raw))

    def _write(self, tenant_id: str, document: TenantDocument) -> None:
        path = self._path_for(tenant_id)
        payload = self._codec.encrypt_document(document.to_dict())
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write tenant document: {e}",
                details={"tenant_id": tenant_id, "file_path": str(path)},
            ) from e

    async def save(self, tenant_id: str, document: TenantDocument) -> None:
        """Replace a tenant document wholesale."""
        async with self._lock_for(tenant_id):
            self._write(tenant_id, document)

    @asynccontextmanager
    async def transaction(self, tenant_id: str) -> AsyncIterator[TenantDocument]:
        """
        Load, yield for in-place modification, then save.

        The document is saved only when the block exits without an exception.
        """
        self._path_for(tenant_id)
        async with self._lock_for(tenant_id):
            document = self.load(tenant_id)
            yield document
            self._write(tenant_id, document)
