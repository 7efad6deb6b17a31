"""Tests for the content-addressed blob store."""

from __future__ import annotations

import hashlib
import json

import pytest

from recruitment.errors import ValidationError
from recruitment.storage import BlobStorage, StorageError, parse_data_url


def test_parse_data_url_variants():
    assert parse_data_url("data:image/png;base64,aGk=") == (b"hi", "image/png")
    assert parse_data_url("data:,hello%20there") == (b"hello there", None)
    assert parse_data_url("data:text/plain,") == (b"", None)
    with pytest.raises(ValidationError):
        parse_data_url("https://example.org/photo.png")


def test_store_is_content_addressed(tmp_path):
    store = BlobStorage(tmp_path)
    ref = store.store(b"photo bytes")
    digest = hashlib.sha256(b"photo bytes").hexdigest()
    assert ref == f"blob://sha256/{digest}"
    assert store.path_for(digest) == tmp_path / "sha256" / digest[:2] / digest
    assert store.read(ref) == b"photo bytes"
    assert store.store(b"photo bytes") == ref


def test_store_writes_metadata_sidecar(tmp_path):
    store = BlobStorage(tmp_path)
    ref = store.store("data:image/jpeg;base64,/9j/", {"event_id": "e1"})
    sidecar = store.path_for_reference(ref).with_suffix(".json")
    meta = json.loads(sidecar.read_text())
    assert meta["event_id"] == "e1"
    assert meta["content_type"] == "image/jpeg"
    assert meta["size_bytes"] == 3


def test_bad_references(tmp_path):
    store = BlobStorage(tmp_path)
    with pytest.raises(StorageError):
        store.path_for("not-a-digest")
    with pytest.raises(StorageError):
        store.exists("file:///etc/passwd")
    with pytest.raises(ValidationError):
        store.store(12345)
