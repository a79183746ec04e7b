"""
Property-based tests for the tenant document store.
"""

import asyncio
import json
import tempfile
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from serdo.exceptions import PersistenceError, ValidationError
from serdo.models import Provider, Server, TenantDocument
from serdo.secret_codec import SecretCodec, is_wrapped
from serdo.tenant_store import TenantStore


def run_async(coro):
    return asyncio.run(coro)


@st.composite
def server_strategy(draw) -> Server:
    index = draw(st.integers(0, 10_000))
    return Server(
        id=f"srv-{index}",
        name=draw(st.text(min_size=1, max_size=20)),
        ip=f"10.0.{index % 256}.{draw(st.integers(1, 254))}",
        ssh_port=draw(st.integers(1, 65535)),
        password=draw(st.text(max_size=20)),
        ssh_password=draw(st.text(max_size=20)),
    )


def make_store(tmpdir: str, secret: str = "test-secret") -> TenantStore:
    return TenantStore(Path(tmpdir), SecretCodec(secret))


class TestPersistenceRoundTripProperty:
    """What is saved loads back unchanged, with secrets encrypted on disk."""

    @given(servers=st.lists(server_strategy(), max_size=5, unique_by=lambda s: s.id))
    @settings(max_examples=30, deadline=None)
    def test_save_load(self, servers: list) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = make_store(tmpdir)
            document = TenantDocument(servers=servers, providers=[Provider(id="p1", name="p", password="pp")])
            run_async(store.save("tenant-1", document))

            loaded = store.load("tenant-1")
            assert loaded.servers == servers
            assert loaded.providers[0].password == "pp"

            raw = json.loads((store.directory / "tenant-1.json").read_text(encoding="utf-8"))
            for server in raw["servers"]:
                for key in ("password", "sshPassword", "providerPassword"):
                    assert server[key] == "" or is_wrapped(server[key])

    def test_missing_tenant_is_empty(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = make_store(tmpdir)
            assert store.load("nobody") == TenantDocument()
            assert not store.exists("nobody")
            assert store.list_tenants() == []

    def test_legacy_plaintext_is_readable_and_rewrapped(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = make_store(tmpdir)
            store.directory.mkdir(parents=True)
            path = store.directory / "legacy.json"
            path.write_text(json.dumps({"servers": [
                {"id": "s1", "name": "old", "ip": "1.1.1.1", "password": "plain"},
            ]}), encoding="utf-8")

            assert store.load("legacy").servers[0].password == "plain"

            async def touch():
                async with store.transaction("legacy"):
                    pass

            run_async(touch())
            raw = json.loads(path.read_text(encoding="utf-8"))
            assert is_wrapped(raw["servers"][0]["password"])

    def test_unknown_fields_survive(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = make_store(tmpdir)
            store.directory.mkdir(parents=True)
            (store.directory / "t.json").write_text(json.dumps({
                "servers": [{"id": "s1", "name": "a", "ip": "1.1.1.1", "region": "eu"}],
            }), encoding="utf-8")
            run_async(store.save("t", store.load("t")))
            raw = json.loads((store.directory / "t.json").read_text(encoding="utf-8"))
            assert raw["servers"][0]["region"] == "eu"


class TestTransactionProperty:
    """Transactions serialize writers per tenant and commit only on success."""

    @given(count=st.integers(min_value=2, max_value=20))
    @settings(max_examples=10, deadline=None)
    def test_concurrent_transactions_lose_nothing(self, count: int) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = make_store(tmpdir)

            async def add(index: int) -> None:
                async with store.transaction("tenant") as document:
                    await asyncio.sleep(0)
                    document.servers.append(Server(id=f"s{index}", name=f"n{index}", ip="10.0.0.1"))

            async def main():
                await asyncio.gather(*(add(i) for i in range(count)))

            run_async(main())
            ids = {s.id for s in store.load("tenant").servers}
            assert ids == {f"s{i}" for i in range(count)}

    def test_exception_discards_changes(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = make_store(tmpdir)

            async def failing():
                async with store.transaction("tenant") as document:
                    document.servers.append(Server(id="s1", name="a", ip="1.1.1.1"))
                    raise RuntimeError("abort")

            with pytest.raises(RuntimeError):
                run_async(failing())
            assert store.load("tenant").servers == []
            assert not store.exists("tenant")


class TestErrorsProperty:
    @pytest.mark.parametrize("tenant_id", ["", "..", "a/b", "../etc/passwd", "x" * 200])
    def test_invalid_tenant_ids(self, tenant_id: str) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(ValidationError):
                make_store(tmpdir).load(tenant_id)

    def test_corrupt_document(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = make_store(tmpdir)
            store.directory.mkdir(parents=True)
            (store.directory / "bad.json").write_text("{oops", encoding="utf-8")
            with pytest.raises(PersistenceError) as exc_info:
                store.load("bad")
            assert exc_info.value.code == "parse_error"

    def test_non_object_document(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = make_store(tmpdir)
            store.directory.mkdir(parents=True)
            (store.directory / "list.json").write_text("[]", encoding="utf-8")
            with pytest.raises(PersistenceError):
                store.load("list")
