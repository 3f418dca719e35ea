from __future__ import annotations

import json
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from charon_key.errors import CacheIOError
from charon_key.infra.cache.file_cache import FileKeyCache

RSA = "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAAB alice@example.com"
ED = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAI alice@laptop"
T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
TTL = timedelta(minutes=5)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


def _make_cache(tmp_path: Path, clock: FakeClock | None = None) -> FileKeyCache:
    return FileKeyCache(tmp_path / "cache", TTL, clock=clock or FakeClock(T0))


def test_write_then_read_is_fresh(tmp_path: Path):
    cache = _make_cache(tmp_path)
    cache.write("alice", [RSA, ED])

    result = cache.read("alice")

    assert result.hit and result.fresh
    assert result.entry.keys == (RSA, ED)
    assert result.entry.fetched_at == T0


def test_record_layout_on_disk(tmp_path: Path):
    cache = _make_cache(tmp_path)
    cache.write("alice", [RSA])

    data = json.loads(cache.path_for("alice").read_text(encoding="utf-8"))

    assert data["identity"] == "alice"
    assert data["keys"] == [RSA]
    assert data["fetched_at"].startswith("2024-05-01T12:00:00")


def test_missing_entry_is_miss(tmp_path: Path):
    result = _make_cache(tmp_path).read("nobody")

    assert result.entry is None
    assert not result.hit
    assert not result.fresh


@pytest.mark.parametrize(
    "age,expired",
    [
        (timedelta(minutes=4, seconds=59), False),
        (TTL, False),
        (timedelta(minutes=5, seconds=1), True),
        (timedelta(days=30), True),
    ],
)
def test_freshness_boundary(tmp_path: Path, age, expired):
    clock = FakeClock(T0)
    cache = _make_cache(tmp_path, clock)
    cache.write("alice", [RSA])

    clock.advance(age)
    result = cache.read("alice")

    assert result.is_expired is expired
    assert result.entry.keys == (RSA,)


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "{not json",
        '{"identity": "alice", "keys": ',
        "[]",
        '{"identity": "alice", "keys": "ssh-rsa AAA", "fetched_at": "2024-05-01T12:00:00+00:00"}',
        '{"identity": "alice", "keys": [1, 2], "fetched_at": "2024-05-01T12:00:00+00:00"}',
        '{"identity": "alice", "keys": [], "fetched_at": "yesterday"}',
        '{"identity": "alice", "keys": []}',
    ],
)
def test_corrupt_record_is_miss(tmp_path: Path, raw: str):
    cache = _make_cache(tmp_path)
    path = cache.path_for("alice")
    path.parent.mkdir(parents=True)
    path.write_text(raw, encoding="utf-8")

    assert cache.read("alice").entry is None


def test_sanitized_name_collision_is_miss(tmp_path: Path):
    cache = _make_cache(tmp_path)
    cache.write("a.b", [RSA])

    assert cache.path_for("a.b") == cache.path_for("a_b")
    assert cache.read("a_b").entry is None
    assert cache.read("a.b").entry.keys == (RSA,)


def test_identity_cannot_escape_cache_dir(tmp_path: Path):
    cache = _make_cache(tmp_path)

    path = cache.path_for("../../etc/passwd")

    assert path.parent == tmp_path / "cache"
    assert path.name == "______etc_passwd.json"
    assert cache.path_for("").name == "default.json"


def test_empty_key_list_is_a_hit(tmp_path: Path):
    cache = _make_cache(tmp_path)
    cache.write("alice", [])

    result = cache.read("alice")

    assert result.fresh
    assert result.entry.keys == ()


def test_write_replaces_atomically_without_leftovers(tmp_path: Path):
    clock = FakeClock(T0)
    cache = _make_cache(tmp_path, clock)
    cache.write("alice", [RSA])
    clock.advance(timedelta(minutes=1))
    cache.write("alice", [ED])

    assert sorted(p.name for p in (tmp_path / "cache").iterdir()) == ["alice.json"]
    result = cache.read("alice")
    assert result.entry.keys == (ED,)
    assert result.entry.fetched_at == T0 + timedelta(minutes=1)


def test_write_failure_raises_cache_io_error(tmp_path: Path):
    blocker = tmp_path / "cache"
    blocker.write_text("not a directory", encoding="utf-8")
    cache = FileKeyCache(blocker, TTL, clock=FakeClock(T0))

    with pytest.raises(CacheIOError) as excinfo:
        cache.write("alice", [RSA])
    assert excinfo.value.identity == "alice"


def test_unreadable_record_raises_cache_io_error(tmp_path: Path):
    cache = _make_cache(tmp_path)
    cache.path_for("alice").mkdir(parents=True)

    with pytest.raises(CacheIOError):
        cache.read("alice")


def test_clear_is_idempotent(tmp_path: Path):
    cache = _make_cache(tmp_path)
    cache.write("alice", [RSA])

    cache.clear("alice")
    cache.clear("alice")
    cache.clear("never-written")

    assert cache.read("alice").entry is None


def test_ttl_below_one_minute_rejected(tmp_path: Path):
    with pytest.raises(ValueError):
        FileKeyCache(tmp_path, timedelta(seconds=30))


def test_default_cache_dir_under_os_temp():
    cache = FileKeyCache(None, TTL)

    assert cache.cache_dir == Path(tempfile.gettempdir()) / "charon-key"


def test_record_with_invalid_utf8_is_miss(tmp_path: Path):
    cache = _make_cache(tmp_path)
    path = cache.path_for("alice")
    path.parent.mkdir(parents=True)
    path.write_bytes(b'{"identity": "alice", "keys": ["\xff\xfe')

    assert cache.read("alice").entry is None


@pytest.mark.parametrize("poisoned", [f"{RSA}\nnot-a-key garbage", f"{RSA}\rcommand=\"sh\"", f"{RSA}\u2028x"])
def test_record_with_multiline_key_is_miss(tmp_path: Path, poisoned: str):
    cache = _make_cache(tmp_path)
    path = cache.path_for("alice")
    path.parent.mkdir(parents=True)
    record = {"identity": "alice", "keys": [ED, poisoned], "fetched_at": "2024-05-01T12:00:00+00:00"}
    path.write_text(json.dumps(record), encoding="utf-8")

    assert cache.read("alice").entry is None
