from __future__ import annotations

import json
import os
import stat
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from ballotbox.credentials import FileCredentialStore, MemoryCredentialStore

if TYPE_CHECKING:
    from conftest import FakeClock


def test_memory_store_round_trip_and_clear() -> None:
    store = MemoryCredentialStore("https://api.example.com")

    assert store.get() is None
    store.save("tok")
    assert store.get() == "tok"
    store.clear()
    assert store.get() is None


def test_memory_store_expires(clock: FakeClock) -> None:
    store = MemoryCredentialStore("https://api.example.com", ttl=timedelta(hours=1), clock=clock)
    store.save("tok")

    clock.advance(3599)
    assert store.get() == "tok"
    clock.advance(1)
    assert store.get() is None


def test_file_store_persists_across_instances(tmp_path: Path) -> None:
    path = tmp_path / "creds.json"
    FileCredentialStore(path, "https://api.example.com").save("tok")

    assert FileCredentialStore(path, "https://api.example.com").get() == "tok"


@pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
def test_file_store_is_owner_only(tmp_path: Path) -> None:
    path = tmp_path / "creds.json"
    FileCredentialStore(path, "https://api.example.com").save("tok")

    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_file_store_is_scoped_to_origin(tmp_path: Path) -> None:
    path = tmp_path / "creds.json"
    ours = FileCredentialStore(path, "https://api.example.com")
    theirs = FileCredentialStore(path, "https://evil.example.net")
    ours.save("tok")

    assert theirs.get() is None
    theirs.save("other")
    theirs.clear()
    assert ours.get() == "tok"


def test_file_store_drops_expired_token(tmp_path: Path, clock: FakeClock) -> None:
    path = tmp_path / "creds.json"
    store = FileCredentialStore(path, "https://api.example.com", ttl=timedelta(days=1), clock=clock)
    store.save("tok")

    clock.advance(86400)

    assert store.get() is None
    assert json.loads(path.read_text(encoding="utf-8")) == {}


def test_file_store_tolerates_garbage(tmp_path: Path) -> None:
    path = tmp_path / "creds.json"
    path.write_text("not json", encoding="utf-8")
    store = FileCredentialStore(path, "https://api.example.com")

    assert store.get() is None
    store.save("tok")
    assert store.get() == "tok"


def test_file_store_drops_malformed_entry(tmp_path: Path) -> None:
    path = tmp_path / "creds.json"
    path.write_text(json.dumps({"https://api.example.com": {"value": "tok"}}), encoding="utf-8")

    assert FileCredentialStore(path, "https://api.example.com").get() is None
