import pytest

from app.core.exceptions import BlobNotFoundError, StorageFailure
from app.core.storage import BlobStore, LocalBlobStore


def test_write_then_read(tmp_path):
    store = LocalBlobStore(tmp_path)
    store.write("certificates/HCTS-1.enc", b"blob")
    assert store.read("certificates/HCTS-1.enc") == b"blob"


def test_documents_are_never_overwritten(tmp_path):
    store = LocalBlobStore(tmp_path)
    store.write("certificates/HCTS-1.enc", b"first")
    with pytest.raises(StorageFailure):
        store.write("certificates/HCTS-1.enc", b"second")
    assert store.read("certificates/HCTS-1.enc") == b"first"


def test_missing_blob(tmp_path):
    with pytest.raises(BlobNotFoundError):
        LocalBlobStore(tmp_path).read("certificates/missing.enc")


def test_delete_is_idempotent(tmp_path):
    store = LocalBlobStore(tmp_path)
    store.write("certificates/HCTS-1.enc", b"blob")
    store.delete("certificates/HCTS-1.enc")
    store.delete("certificates/HCTS-1.enc")
    with pytest.raises(BlobNotFoundError):
        store.read("certificates/HCTS-1.enc")


def test_keys_cannot_escape_root(tmp_path):
    store = LocalBlobStore(tmp_path / "root")
    with pytest.raises(StorageFailure):
        store.write("../outside.enc", b"blob")
    assert not (tmp_path / "outside.enc").exists()


def test_blob_store_is_abstract():
    with pytest.raises(TypeError):
        BlobStore()

    class WriteOnly(BlobStore):
        def write(self, path, data):
            pass

    with pytest.raises(TypeError):
        WriteOnly()
