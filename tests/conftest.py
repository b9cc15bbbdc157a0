import os
import tempfile

# Keep the module-level app in server.py away from the project's ./notes.
os.environ.setdefault("MDPASTE_NOTES_ROOT", tempfile.mkdtemp(prefix="mdpaste_notes_"))

import pytest
from fastapi.testclient import TestClient

from mdpaste_backend.auth import hash_password
from mdpaste_backend.compiler import PasteCompiler
from mdpaste_backend.models import FileEntry
from mdpaste_backend.store import PasteStore
from server import create_app

TEST_USER = "alice"
TEST_PASSWORD = "wonderland"


@pytest.fixture(name="notes_root")
def notes_root_fixture(tmp_path):
    return tmp_path / "notes"


@pytest.fixture(name="store")
def store_fixture(notes_root):
    return PasteStore(notes_root)


@pytest.fixture(name="compiler")
def compiler_fixture():
    return PasteCompiler()


@pytest.fixture(name="paste")
def paste_fixture(store):
    """A paste with two plain text files, a then b."""
    paste = store.create({"title": "Two Files", "author": "Alice"}, paste_id="two-files")
    paste.add_file("a.txt", b"alpha", FileEntry(description="first"))
    paste.add_file("b.txt", b"bravo", FileEntry(description="second"))
    return paste


@pytest.fixture(name="htpasswd")
def htpasswd_fixture(tmp_path):
    path = tmp_path / ".htpasswd"
    path.write_text(
        "# test accounts\n"
        f"{TEST_USER}:{hash_password(TEST_PASSWORD, rounds=4)}\n"
        "malformed-line\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture(name="client")
def client_fixture(notes_root, htpasswd):
    app = create_app(notes_root=notes_root, htpasswd_path=htpasswd)
    with TestClient(app) as client:
        yield client


@pytest.fixture(name="auth")
def auth_fixture():
    return (TEST_USER, TEST_PASSWORD)
