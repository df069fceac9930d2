"""Tests for sidecar persistence.

Covers:
- Sidecar locations for indexes and directories
- Load returns None when the sidecar is missing or corrupt
- Save writes gzip-compressed JSON atomically
- Bare checksum sidecars (local and remote)
- Tree listing save / load / discard
- Remote sidecars are read through the fetch function, never written
"""

from __future__ import annotations

import gzip
import json
import os
from pathlib import Path

import pytest

from casync_updater.errors import Unavailable
from casync_updater.sync.models import ReplicaRef
from casync_updater.sync.state import ChecksumCache


def _index(tmp_path: Path) -> ReplicaRef:
    return ReplicaRef(location=str(tmp_path / "app.caidx"))


class TestSidecarLocation:
    """Tests for ReplicaRef.sidecar()."""

    def test_index_sidecar_is_appended(self):
        ref = ReplicaRef(location="/srv/app.caidx")
        assert ref.sidecar(".cks") == "/srv/app.caidx.cks"

    def test_directory_sidecar_is_sibling(self):
        ref = ReplicaRef(location="/srv/app", is_directory=True)
        assert ref.sidecar(".cks") == "/srv/app.cks"

    def test_directory_trailing_slash(self):
        ref = ReplicaRef(location="/srv/app/", is_directory=True)
        assert ref.sidecar(".mtree") == "/srv/app.mtree"

    def test_remote_sidecar(self):
        ref = ReplicaRef(location="https://example.com/app.caidx")
        assert ref.is_remote
        assert ref.sidecar(".cks") == "https://example.com/app.caidx.cks"


class TestChecksumCacheLoad:
    """Tests for ChecksumCache.load()."""

    def test_missing_sidecar(self, tmp_path: Path):
        assert ChecksumCache().load(_index(tmp_path)) is None

    def test_corrupt_sidecar(self, tmp_path: Path):
        ref = _index(tmp_path)
        Path(ref.sidecar(".cks")).write_bytes(b"not gzip")
        assert ChecksumCache().load(ref) is None

    def test_bare_local_checksum_uses_mtime(self, tmp_path: Path):
        ref = _index(tmp_path)
        path = Path(ref.sidecar(".cks"))
        path.write_bytes(gzip.compress(b"abc123\n"))
        os.utime(path, (1_700_000_000, 1_700_000_000))

        rec = ChecksumCache().load(ref)
        assert rec.checksum == "abc123"
        assert rec.persisted is True
        assert rec.timestamp.timestamp() == 1_700_000_000

    def test_bare_checksum_with_spaces_rejected(self, tmp_path: Path):
        ref = _index(tmp_path)
        Path(ref.sidecar(".cks")).write_bytes(gzip.compress(b"a b"))
        assert ChecksumCache().load(ref) is None

    def test_bare_remote_checksum_is_unrecorded(self):
        ref = ReplicaRef(location="https://example.com/app.caidx")
        cache = ChecksumCache(fetch=lambda url: gzip.compress(b"abc123"))
        rec = cache.load(ref)
        assert rec.checksum == "abc123"
        assert rec.persisted is False

    def test_remote_json_record(self, record):
        ref = ReplicaRef(location="https://example.com/app.caidx")
        payload = ChecksumCache.encode_record(record("c1", 0))
        requested = []

        def fetch(url):
            requested.append(url)
            return gzip.compress(payload.encode())

        rec = ChecksumCache(fetch=fetch).load(ref)
        assert requested == ["https://example.com/app.caidx.cks"]
        assert rec == record("c1", 0)

    def test_remote_404(self):
        ref = ReplicaRef(location="https://example.com/app.caidx")
        assert ChecksumCache(fetch=lambda url: None).load(ref) is None

    def test_remote_failure_propagates(self):
        ref = ReplicaRef(location="https://example.com/app.caidx")

        def fetch(url):
            raise Unavailable(url, "connection refused")

        with pytest.raises(Unavailable):
            ChecksumCache(fetch=fetch).load(ref)


class TestChecksumCacheSave:
    """Tests for ChecksumCache.save()."""

    def test_save_round_trip(self, tmp_path: Path, record):
        ref = _index(tmp_path)
        cache = ChecksumCache()
        saved = cache.save(ref, record("c1", 5, persisted=False))
        assert saved.persisted is True
        assert cache.load(ref) == saved

    def test_save_writes_gzip_json(self, tmp_path: Path, record):
        ref = _index(tmp_path)
        ChecksumCache().save(ref, record("c1", 0))
        raw = gzip.decompress(Path(ref.sidecar(".cks")).read_bytes())
        data = json.loads(raw)
        assert data["checksum"] == "c1"
        assert data["timestamp"].startswith("2024-05-01T12:00:00")

    def test_save_leaves_no_temp_files(self, tmp_path: Path, record):
        ref = _index(tmp_path)
        ChecksumCache().save(ref, record("c1", 0))
        assert [p.name for p in tmp_path.iterdir()] == ["app.caidx.cks"]

    def test_directory_sidecar_outside_tree(self, tmp_path: Path, record):
        dst = tmp_path / "dst"
        dst.mkdir()
        ref = ReplicaRef(location=str(dst), is_directory=True)
        ChecksumCache().save(ref, record("c1", 0))
        assert (tmp_path / "dst.cks").exists()
        assert list(dst.iterdir()) == []

    def test_remote_save_rejected(self, record):
        ref = ReplicaRef(location="https://example.com/app.caidx")
        with pytest.raises(ValueError):
            ChecksumCache().save(ref, record("c1", 0))


class TestTreeListing:
    """Tests for the .mtree sidecar."""

    def test_save_and_load(self, tmp_path: Path):
        ref = _index(tmp_path)
        cache = ChecksumCache()
        cache.save_tree(ref, ". type=dir\n")
        assert cache.load_tree(ref) == ". type=dir\n"

    def test_discard(self, tmp_path: Path):
        ref = _index(tmp_path)
        cache = ChecksumCache()
        cache.save_tree(ref, "x")
        cache.discard_tree(ref)
        cache.discard_tree(ref)
        assert cache.load_tree(ref) is None

    def test_decode_record_rejects_bad_json(self):
        assert ChecksumCache.decode_record("[1, 2]") is None
        assert ChecksumCache.decode_record('{"checksum": "a"}') is None
        assert (
            ChecksumCache.decode_record(
                '{"checksum": "a", "timestamp": "yesterday"}'
            )
            is None
        )
