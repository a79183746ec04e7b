"""
Credential verification used by the reveal protocol.

Bearer tokens are compact HS256 JWTs (``sub``, ``iat``, ``exp``) signed with
the process secret. Passwords are stored as scrypt digests with a per-user
hex salt; unsalted SHA-256 digests from older accounts are still accepted.
"""

import base64
import hashlib
import hmac
import json
import os
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .exceptions import PersistenceError, ValidationError

SCRYPT_N = 16384
SCRYPT_R = 8
SCRYPT_P = 1
SCRYPT_DKLEN = 32


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def hash_password(password: str, salt: str) -> str:
    """scrypt digest of ``password`` as hex; ``salt`` is used as its text form."""
    return hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
        dklen=SCRYPT_DKLEN,
    ).hex()


def legacy_hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


class TokenSigner:
    """Issues and verifies HS256 bearer tokens."""

    def __init__(self, secret: str, ttl_seconds: int = 7 * 24 * 3600) -> None:
        self._secret = secret.encode("utf-8")
        self._ttl_seconds = ttl_seconds

    def sign(self, user_id: str, now: Optional[int] = None) -> str:
        issued = int(time.time()) if now is None else now
        header = _b64url(json.dumps({"alg": "HS256", "typ": "JWT"}, separators=(",", ":")).encode())
        payload = _b64url(json.dumps(
            {"sub": user_id, "iat": issued, "exp": issued + self._ttl_seconds},
            separators=(",", ":"),
        ).encode())
        return f"{header}.{payload}.{self._signature(header, payload)}"

    def verify(self, token: Optional[str], now: Optional[int] = None) -> Optional[str]:
        """Return the token's subject, or None if it is malformed, forged or expired."""
        parts = (token or "").split(".")
        if len(parts) != 3:
            return None
        header, payload, signature = parts
        if not hmac.compare_digest(signature.encode("utf-8"), self._signature(header, payload).encode("ascii")):
            return None
        try:
            claims = json.loads(_b64url_decode(payload))
        except (ValueError, UnicodeDecodeError):
            return None
        if not isinstance(claims, dict):
            return None
        current = int(time.time()) if now is None else now
        exp = claims.get("exp")
        if isinstance(exp, (int, float)) and current > exp:
            return None
        subject = claims.get("sub")
        return str(subject) if subject else None

    def _signature(self, header: str, payload: str) -> str:
        return _b64url(hmac.new(self._secret, f"{header}.{payload}".encode(), hashlib.sha256).digest())


@dataclass
class UserRecord:
    """A stored account. ``id`` doubles as the tenant id."""

    id: str
    username: str
    password: str
    salt: str = ""
    email: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "password": self.password,
            "salt": self.salt,
        }


class UserStore:
    """JSON-file account store (``users.json`` in the data directory)."""

    def __init__(self, file_path: Path) -> None:
        self._file_path = file_path

    def _read(self) -> list[UserRecord]:
        if not self._file_path.exists():
            return []
        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Failed to parse user file: {e}",
                details={"file_path": str(self._file_path)},
            ) from e
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read user file: {e}",
                details={"file_path": str(self._file_path)},
            ) from e
        return [
            UserRecord(
                id=str(u.get("id", "")),
                username=str(u.get("username", "")),
                password=str(u.get("password", "")),
                salt=str(u.get("salt") or ""),
                email=str(u.get("email") or ""),
            )
            for u in raw if isinstance(u, dict)
        ]

    def _write(self, users: list[UserRecord]) -> None:
        try:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._file_path.with_suffix(".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump([u.to_dict() for u in users], f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self._file_path)
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write user file: {e}",
                details={"file_path": str(self._file_path)},
            ) from e

    def get(self, user_id: str) -> Optional[UserRecord]:
        return next((u for u in self._read() if u.id == user_id), None)

    def find_by_username(self, username: str) -> Optional[UserRecord]:
        return next((u for u in self._read() if u.username == username), None)

    def register(self, username: str, password: str, email: str = "") -> UserRecord:
        if not username or not password:
            raise ValidationError(code="invalid", message="Username and password are required")
        users = self._read()
        if any(u.username == username for u in users):
            raise ValidationError(code="username_taken", message=f"Username already taken: {username}")
        salt = secrets.token_hex(16)
        user = UserRecord(
            id=f"user_{int(time.time() * 1000)}_{secrets.token_hex(4)}",
            username=username,
            password=hash_password(password, salt),
            salt=salt,
            email=email,
        )
        users.append(user)
        self._write(users)
        return user

    def verify_password(self, user_id: str, password: str) -> bool:
        user = self.get(user_id)
        if user is None or not password:
            return False
        if user.salt:
            candidate = hash_password(password, user.salt)
        else:
            candidate = legacy_hash_password(password)
        return hmac.compare_digest(candidate.encode("ascii"), user.password.encode("utf-8"))
