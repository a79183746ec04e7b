"""
At-rest envelope encryption for secret fields.

Every secret field in a tenant document is stored as

    enc:gcm:<iv b64>:<tag b64>:<ciphertext b64>

sealed with AES-256-GCM under a single process-wide key, the SHA-256 digest
of the configured auth secret. Values without the ``enc:gcm:`` prefix are
legacy plaintext and are returned as-is. A value that fails to open (wrong
key, bad tag, damaged base64) reads as the empty string and is logged.

The same primitive re-seals a secret under a client-supplied reveal key for
one-shot disclosure, see ``serdo.reveal``.
"""

import base64
import binascii
import copy
import hashlib
import os
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .audit_logger import AuditLogger

ENVELOPE_PREFIX = "enc:gcm:"
IV_BYTES = 12
TAG_BYTES = 16
KEY_BYTES = 32

# Paths of secret fields inside a serialized tenant document.
SERVER_SECRET_KEYS = ("password", "sshPassword", "providerPassword")
PROVIDER_SECRET_KEYS = ("password",)
SETTINGS_SECRET_PATHS = (
    ("whoisApiKey",),
    ("notifications", "bark", "key"),
    ("notifications", "smtp", "password"),
)


@dataclass(frozen=True)
class SealedSecret:
    """AES-GCM output split into its wire parts, all base64."""

    iv: str
    tag: str
    data: str

    def to_dict(self) -> dict:
        return {"iv": self.iv, "tag": self.tag, "data": self.data}


def derive_key(secret: str) -> bytes:
    """Derive the 32-byte at-rest key from the process secret."""
    return hashlib.sha256(secret.encode("utf-8")).digest()


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _unb64(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)


def seal(plaintext: str, key: bytes) -> SealedSecret:
    """Encrypt ``plaintext`` under ``key`` with a fresh random IV."""
    iv = os.urandom(IV_BYTES)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    return SealedSecret(
        iv=_b64(iv),
        tag=_b64(sealed[-TAG_BYTES:]),
        data=_b64(sealed[:-TAG_BYTES]),
    )


def open_sealed(sealed: SealedSecret, key: bytes) -> str:
    """
    Decrypt a SealedSecret.

    Raises:
        InvalidTag: If the key or any part is wrong
        ValueError: If a part is not valid base64
    """
    try:
        iv = _unb64(sealed.iv)
        tag = _unb64(sealed.tag)
        data = _unb64(sealed.data)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"Malformed sealed secret: {e}") from e
    return AESGCM(key).decrypt(iv, data + tag, None).decode("utf-8")


def is_wrapped(value: object) -> bool:
    return isinstance(value, str) and value.startswith(ENVELOPE_PREFIX)


class SecretCodec:
    """Wraps and unwraps secret fields with the process-wide at-rest key."""

    def __init__(self, auth_secret: str, logger: Optional[AuditLogger] = None) -> None:
        if not auth_secret:
            raise ValueError("auth_secret cannot be empty")
        self._key = derive_key(auth_secret)
        self._logger = logger

    def wrap_at_rest(self, plaintext: Optional[str]) -> str:
        """Return the envelope for ``plaintext``, or ``""`` for empty input."""
        if not plaintext:
            return ""
        sealed = seal(plaintext, self._key)
        return f"{ENVELOPE_PREFIX}{sealed.iv}:{sealed.tag}:{sealed.data}"

    def unwrap_at_rest(self, value: Optional[str]) -> str:
        """
        Return the plaintext behind ``value``.

        Legacy plaintext passes through unchanged. Envelopes that cannot be
        opened yield ``""``; the failure is logged, never raised.
        """
        if not value:
            return ""
        if not is_wrapped(value):
            return value

        parts = value[len(ENVELOPE_PREFIX):].split(":")
        if len(parts) != 3:
            self._log_failure("malformed envelope", None)
            return ""
        try:
            return open_sealed(SealedSecret(iv=parts[0], tag=parts[1], data=parts[2]), self._key)
        except (InvalidTag, ValueError) as e:
            self._log_failure("envelope failed to open", e)
            return ""

    def encrypt_document(self, document: dict) -> dict:
        """Return a copy of a serialized tenant document with every secret field wrapped."""
        return self._map_secrets(document, self.wrap_at_rest)

    def decrypt_document(self, document: dict) -> dict:
        """Return a copy of a serialized tenant document with every secret field unwrapped."""
        return self._map_secrets(document, self.unwrap_at_rest)

    def _map_secrets(self, document: dict, transform) -> dict:
        result = copy.deepcopy(document)
        for server in result.get("servers") or []:
            if isinstance(server, dict):
                for key in SERVER_SECRET_KEYS:
                    server[key] = transform(server.get(key) or "")
        for provider in result.get("providers") or []:
            if isinstance(provider, dict):
                for key in PROVIDER_SECRET_KEYS:
                    provider[key] = transform(provider.get(key) or "")
        settings = result.get("settings")
        if isinstance(settings, dict):
            for path in SETTINGS_SECRET_PATHS:
                node = settings
                for part in path[:-1]:
                    child = node.get(part)
                    if not isinstance(child, dict):
                        child = {}
                        node[part] = child
                    node = child
                node[path[-1]] = transform(node.get(path[-1]) or "")
        return result

    def _log_failure(self, message: str, error: Optional[Exception]) -> None:
        if self._logger is None:
            return
        self._logger.log_error(
            component="SecretCodec",
            message=f"At-rest secret unreadable: {message}",
            error=error,
        )
