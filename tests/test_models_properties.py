"""
Property-based tests for tenant models and partial secret updates.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from serdo.enums import CheckFrequency, DomainState
from serdo.models import (
    KEEP_PLACEHOLDERS,
    Domain,
    PatchKind,
    Provider,
    SecretPatch,
    Server,
    Settings,
    TenantDocument,
    apply_provider_secrets,
    apply_server_secrets,
    apply_settings_secrets,
)

secret_values = st.text(min_size=1, max_size=30).filter(lambda s: s not in KEEP_PLACEHOLDERS)


class TestSecretPatchProperty:
    """Absent or masked means keep, empty means clear, anything else sets."""

    @given(current=st.text(max_size=20))
    @settings(max_examples=50)
    def test_keep(self, current: str) -> None:
        assert SecretPatch.from_input({}, "password").apply(current) == current
        assert SecretPatch.from_input({"password": None}, "password").apply(current) == current
        for placeholder in KEEP_PLACEHOLDERS:
            assert SecretPatch.from_input({"password": placeholder}, "password").apply(current) == current

    @given(current=st.text(max_size=20))
    @settings(max_examples=50)
    def test_clear(self, current: str) -> None:
        patch = SecretPatch.from_input({"password": ""}, "password")
        assert patch.kind is PatchKind.CLEAR
        assert patch.apply(current) == ""

    @given(current=st.text(max_size=20), new=secret_values)
    @settings(max_examples=50)
    def test_set(self, current: str, new: str) -> None:
        assert SecretPatch.from_input({"password": new}, "password").apply(current) == new


class TestApplySecretsProperty:
    @given(new=secret_values)
    @settings(max_examples=30)
    def test_server_fields_independent(self, new: str) -> None:
        server = Server(id="s", name="n", ip="1.1.1.1", password="a", ssh_password="b", provider_password="c")
        updated = apply_server_secrets(server, {"sshPassword": new, "providerPassword": ""})
        assert (updated.password, updated.ssh_password, updated.provider_password) == ("a", new, "")
        assert server.ssh_password == "b"

    def test_provider(self) -> None:
        provider = Provider(id="p", name="n", password="old")
        assert apply_provider_secrets(provider, {"password": "********"}).password == "old"

    def test_settings_nested(self) -> None:
        settings_ = Settings(whois_api_key="k")
        settings_.notifications.bark.key = "bark"
        settings_.notifications.smtp.password = "smtp"
        updated = apply_settings_secrets(settings_, {
            "whoisApiKey": "__KEEP__",
            "notifications": {"bark": {"key": ""}, "smtp": {"password": "new"}},
        })
        assert updated.whois_api_key == "k"
        assert updated.notifications.bark.key == ""
        assert updated.notifications.smtp.password == "new"


class TestWireFormatProperty:
    """Documents convert to camelCase dicts and back."""

    @given(
        hours=st.integers(0, 48),
        frequency=st.sampled_from(list(CheckFrequency)),
        language=st.sampled_from(["en", "zh", "fr"]),
    )
    @settings(max_examples=50)
    def test_settings_round_trip(self, hours: int, frequency: CheckFrequency, language: str) -> None:
        data = Settings(
            server_auto_check_interval_hours=hours,
            domain_auto_check_frequency=frequency,
            language=language,
        ).to_dict()
        restored = Settings.from_dict(data)
        assert restored.server_auto_check_interval_hours == hours
        assert restored.domain_auto_check_frequency == frequency
        assert restored.language == (language if language in ("en", "zh") else "en")

    @pytest.mark.parametrize("raw,expected", [
        ("post", "POST"),
        ("GET", "GET"),
        (None, "GET"),
        ("", "GET"),
        ("DELETE", "GET"),
    ])
    def test_api_method_normalized(self, raw, expected) -> None:
        assert Settings.from_dict({"whoisApiMethod": raw}).whois_api_method == expected

    def test_base_url_defaults_empty(self) -> None:
        assert Settings().whois_api_base_url == ""
        assert Settings.from_dict({}).whois_api_base_url == ""
        assert Settings.from_dict({"whoisApiBaseUrl": "https://w.example/api"}).whois_api_base_url == (
            "https://w.example/api"
        )

    def test_tolerant_domain_parsing(self) -> None:
        domain = Domain.from_dict({
            "id": "d1", "name": "example.com", "status": "active", "state": "bogus",
            "records": [{"type": "a", "value": "1.1.1.1"}, "junk"], "daysRemaining": "12",
        })
        assert domain.status == ["active"]
        assert domain.state is None
        assert domain.records[0].type == "A"
        assert domain.days_remaining == 12

    def test_document_round_trip(self) -> None:
        document = TenantDocument(
            servers=[Server(id="s", name="n", ip="1.1.1.1", extra={"region": "eu"})],
            domains=[Domain(id="d", name="example.com", state=DomainState.NORMAL, days_remaining=90)],
        )
        assert TenantDocument.from_dict(document.to_dict()) == document
