"""
On-demand disclosure of stored secrets.

A client first opens a reveal session by presenting its bearer token and
re-entering its password; it receives a random 32-byte key (base64) that the
server does not keep. Each later reveal request carries that key; the server
unwraps the stored secret and re-seals it under the client key, so the
plaintext never crosses the wire unencrypted at the application layer.
"""

import base64
import binascii
import os
from dataclasses import dataclass
from typing import Optional

from .audit_logger import AuditLogger
from .auth import TokenSigner, UserStore
from .enums import AuthErrorCode, SecretOwner
from .exceptions import AuthError, NotFoundError, ValidationError
from .models import TenantDocument
from .secret_codec import KEY_BYTES, SealedSecret, seal
from .tenant_store import TenantStore

# owner -> field name -> reader over the owning object
_SECRET_READERS = {
    SecretOwner.SERVER: {
        "password": lambda s: s.password,
        "sshPassword": lambda s: s.ssh_password,
        "providerPassword": lambda s: s.provider_password,
    },
    SecretOwner.PROVIDER: {
        "password": lambda p: p.password,
    },
    SecretOwner.SETTINGS: {
        "whoisApiKey": lambda st: st.whois_api_key,
        "barkKey": lambda st: st.notifications.bark.key,
        "smtpPassword": lambda st: st.notifications.smtp.password,
    },
}


@dataclass(frozen=True)
class SecretRef:
    """Names one secret field of one tenant entity."""

    owner: SecretOwner
    field: str
    entity_id: Optional[str] = None

    @classmethod
    def parse(cls, owner: str, field: str, entity_id: Optional[str] = None) -> "SecretRef":
        """
        Build a reference from loose input.

        Raises:
            ValidationError: If the owner or field is unknown, or an entity id is missing
        """
        try:
            kind = SecretOwner(owner)
        except ValueError as e:
            raise ValidationError(code="invalid", message=f"Unknown secret owner: {owner}") from e
        if field not in _SECRET_READERS[kind]:
            raise ValidationError(code="invalid", message=f"Unknown secret field: {owner}.{field}")
        if kind is not SecretOwner.SETTINGS and not entity_id:
            raise ValidationError(code="invalid", message=f"{owner} secrets need an entity id")
        return cls(owner=kind, field=field, entity_id=entity_id)


def decode_reveal_key(reveal_key: Optional[str]) -> bytes:
    """
    Decode a base64 reveal key and check it is exactly 32 bytes.

    Raises:
        AuthError: If the key is missing, not base64, or the wrong length
    """
    if not reveal_key:
        raise AuthError(
            code=AuthErrorCode.INVALID_REVEAL_KEY.value,
            message="Missing reveal key",
        )
    try:
        key = base64.b64decode(reveal_key.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise AuthError(
            code=AuthErrorCode.INVALID_REVEAL_KEY.value,
            message="Reveal key is not valid base64",
        ) from e
    if len(key) != KEY_BYTES:
        raise AuthError(
            code=AuthErrorCode.INVALID_REVEAL_KEY.value,
            message=f"Reveal key must be {KEY_BYTES} bytes",
            details={"length": len(key)},
        )
    return key


def read_secret(document: TenantDocument, ref: SecretRef) -> str:
    """
    Return the plaintext of ``ref`` from a loaded document.

    Raises:
        NotFoundError: If the owning server or provider does not exist
    """
    reader = _SECRET_READERS[ref.owner][ref.field]
    if ref.owner is SecretOwner.SETTINGS:
        return reader(document.settings) or ""
    if ref.owner is SecretOwner.SERVER:
        owner = document.find_server(ref.entity_id or "")
    else:
        owner = document.find_provider(ref.entity_id or "")
    if owner is None:
        raise NotFoundError(
            code="not_found",
            message=f"{ref.owner.value} not found: {ref.entity_id}",
            details={"owner": ref.owner.value, "entity_id": ref.entity_id},
        )
    return reader(owner) or ""


class RevealSession:
    """Issues reveal keys and serves secrets sealed under them."""

    def __init__(
        self,
        store: TenantStore,
        users: UserStore,
        tokens: TokenSigner,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._store = store
        self._users = users
        self._tokens = tokens
        self._logger = logger

    def _authenticate(self, token: Optional[str]) -> str:
        user_id = self._tokens.verify(token)
        if not user_id:
            raise AuthError(
                code=AuthErrorCode.UNAUTHORIZED.value,
                message="Missing or invalid bearer token",
            )
        return user_id

    def open_session(self, token: Optional[str], current_password: Optional[str]) -> str:
        """
        Verify the caller and hand out a fresh base64 reveal key.

        Raises:
            AuthError: ``unauthorized`` for a bad token, ``invalid`` for an empty
                password, ``invalid_current_password`` for a wrong one
        """
        user_id = self._authenticate(token)
        if not current_password:
            raise AuthError(code=AuthErrorCode.INVALID.value, message="Current password is required")
        if not self._users.verify_password(user_id, current_password):
            if self._logger:
                self._logger.audit(user_id, "reveal_session_denied")
            raise AuthError(
                code=AuthErrorCode.INVALID_CURRENT_PASSWORD.value,
                message="Current password is incorrect",
            )
        if self._logger:
            self._logger.audit(user_id, "reveal_session_opened")
        return base64.b64encode(os.urandom(KEY_BYTES)).decode("ascii")

    def reveal_secret(
        self,
        token: Optional[str],
        reveal_key: Optional[str],
        ref: SecretRef,
    ) -> Optional[SealedSecret]:
        """
        Return the referenced secret sealed under the caller's reveal key.

        Credentials are checked before the tenant document is touched.

        Returns:
            SealedSecret, or None when the field holds no secret

        Raises:
            AuthError: Missing token or malformed reveal key
            NotFoundError: The owning entity does not exist
        """
        user_id = self._authenticate(token)
        key = decode_reveal_key(reveal_key)

        plaintext = read_secret(self._store.load(user_id), ref)
        if self._logger:
            self._logger.audit(user_id, "secret_revealed", {
                "owner": ref.owner.value,
                "field": ref.field,
                "entity_id": ref.entity_id,
                "empty": not plaintext,
            })
        if not plaintext:
            return None
        return seal(plaintext, key)
