"""
Property-based tests for the at-rest secret codec.
"""

import base64
import os
from io import StringIO

import pytest
from cryptography.exceptions import InvalidTag
from hypothesis import assume, given, settings
from hypothesis import strategies as st

from serdo.audit_logger import AuditLogger
from serdo.enums import LogLevel
from serdo.secret_codec import (
    ENVELOPE_PREFIX,
    SealedSecret,
    SecretCodec,
    is_wrapped,
    open_sealed,
    seal,
)

secret_text = st.text(min_size=1, max_size=200)
process_secret = st.text(min_size=1, max_size=40)


def make_document(server_password: str, smtp_password: str, api_key: str) -> dict:
    return {
        "servers": [{"id": "s1", "name": "web", "ip": "10.0.0.1",
                     "password": server_password, "sshPassword": "", "providerPassword": "p"}],
        "providers": [{"id": "p1", "name": "host", "password": "prov"}],
        "settings": {
            "whoisApiKey": api_key,
            "notifications": {"smtp": {"password": smtp_password}, "bark": {"key": ""}},
        },
    }


class TestWrapUnwrapProperty:
    """Wrapping then unwrapping under the same secret returns the input."""

    @given(plaintext=secret_text, secret=process_secret)
    @settings(max_examples=100)
    def test_round_trip(self, plaintext: str, secret: str) -> None:
        codec = SecretCodec(secret)
        wrapped = codec.wrap_at_rest(plaintext)

        assert wrapped.startswith(ENVELOPE_PREFIX)
        assert codec.unwrap_at_rest(wrapped) == plaintext

    @given(plaintext=secret_text)
    @settings(max_examples=50)
    def test_fresh_iv_per_call(self, plaintext: str) -> None:
        codec = SecretCodec("k")
        assert codec.wrap_at_rest(plaintext) != codec.wrap_at_rest(plaintext)

    def test_empty_wraps_to_empty(self) -> None:
        codec = SecretCodec("k")
        assert codec.wrap_at_rest("") == ""
        assert codec.wrap_at_rest(None) == ""
        assert codec.unwrap_at_rest("") == ""

    def test_envelope_has_three_base64_parts(self) -> None:
        wrapped = SecretCodec("k").wrap_at_rest("hunter2")
        iv, tag, data = wrapped[len(ENVELOPE_PREFIX):].split(":")
        assert len(base64.b64decode(iv)) == 12
        assert len(base64.b64decode(tag)) == 16
        assert len(base64.b64decode(data)) == len("hunter2")


class TestLegacyAndFailureProperty:
    """Legacy plaintext passes through; unreadable envelopes read as empty."""

    @given(value=st.text(min_size=1, max_size=100).filter(lambda s: not s.startswith(ENVELOPE_PREFIX)))
    @settings(max_examples=100)
    def test_legacy_plaintext_passthrough(self, value: str) -> None:
        assert SecretCodec("k").unwrap_at_rest(value) == value

    @given(plaintext=secret_text, secret_a=process_secret, secret_b=process_secret)
    @settings(max_examples=50)
    def test_wrong_key_reads_empty(self, plaintext: str, secret_a: str, secret_b: str) -> None:
        assume(secret_a != secret_b)
        wrapped = SecretCodec(secret_a).wrap_at_rest(plaintext)
        assert SecretCodec(secret_b).unwrap_at_rest(wrapped) == ""

    @given(
        part=st.sampled_from(["tag", "ciphertext"]),
        position=st.integers(min_value=0, max_value=1000),
        mask=st.integers(min_value=1, max_value=255),
    )
    @settings(max_examples=100)
    def test_any_flipped_byte_reads_empty_and_logs(self, part: str, position: int, mask: int) -> None:
        stream = StringIO()
        logger = AuditLogger(output_format="json", output_stream=stream)
        codec = SecretCodec("k", logger)
        iv, tag, data = codec.wrap_at_rest("secret-value")[len(ENVELOPE_PREFIX):].split(":")
        index = {"tag": 1, "ciphertext": 2}[part]
        pieces = [iv, tag, data]
        raw = bytearray(base64.b64decode(pieces[index]))
        raw[position % len(raw)] ^= mask
        pieces[index] = base64.b64encode(bytes(raw)).decode()
        tampered = ENVELOPE_PREFIX + ":".join(pieces)

        assert codec.unwrap_at_rest(tampered) == ""
        assert any(e.level == LogLevel.ERROR for e in logger.entries)
        assert "secret-value" not in stream.getvalue()

    def test_malformed_envelopes_read_empty(self) -> None:
        codec = SecretCodec("k")
        for value in ("enc:gcm:", "enc:gcm:a:b", "enc:gcm:!!:??:**", "enc:gcm:a:b:c:d"):
            assert codec.unwrap_at_rest(value) == ""


class TestDocumentProperty:
    """Every secret field of a document is wrapped on encrypt and restored on decrypt."""

    @given(server_password=st.text(max_size=30), smtp_password=st.text(max_size=30), api_key=st.text(max_size=30))
    @settings(max_examples=50)
    def test_document_round_trip(self, server_password: str, smtp_password: str, api_key: str) -> None:
        codec = SecretCodec("doc-secret")
        document = make_document(server_password, smtp_password, api_key)

        encrypted = codec.encrypt_document(document)
        for value in (
            encrypted["servers"][0]["password"],
            encrypted["servers"][0]["providerPassword"],
            encrypted["providers"][0]["password"],
            encrypted["settings"]["whoisApiKey"],
            encrypted["settings"]["notifications"]["smtp"]["password"],
        ):
            assert value == "" or is_wrapped(value)
        assert encrypted["servers"][0]["ip"] == "10.0.0.1"

        decrypted = codec.decrypt_document(encrypted)
        assert decrypted["servers"][0]["password"] == server_password
        assert decrypted["settings"]["whoisApiKey"] == api_key
        assert decrypted["settings"]["notifications"]["smtp"]["password"] == smtp_password
        assert decrypted["providers"][0]["password"] == "prov"

    def test_encrypt_does_not_mutate_input(self) -> None:
        document = make_document("pw", "smtp", "key")
        SecretCodec("k").encrypt_document(document)
        assert document["servers"][0]["password"] == "pw"

    def test_missing_settings_sections_are_created(self) -> None:
        encrypted = SecretCodec("k").encrypt_document({"settings": {}})
        assert encrypted["settings"]["notifications"]["bark"]["key"] == ""


class TestSealUnderClientKeyProperty:
    """Secrets sealed under a reveal key open only with that key."""

    @given(plaintext=secret_text)
    @settings(max_examples=50)
    def test_seal_open(self, plaintext: str) -> None:
        key = os.urandom(32)
        sealed = seal(plaintext, key)
        assert open_sealed(sealed, key) == plaintext
        assert set(sealed.to_dict()) == {"iv", "tag", "data"}

    def test_wrong_client_key_fails(self) -> None:
        sealed = seal("x", os.urandom(32))
        with pytest.raises(InvalidTag):
            open_sealed(sealed, os.urandom(32))

    def test_malformed_parts_raise_value_error(self) -> None:
        with pytest.raises(ValueError):
            open_sealed(SealedSecret("!!", "??", "**"), os.urandom(32))
