import pytest

from mdpaste_backend.errors import StorageIOError
from mdpaste_backend.models import FileEntry


def test_multi_mode_renders_visible_files_in_order(compiler, paste):
    paste.add_file("secret.txt", b"hidden text", FileEntry(hidden=True))
    paste.reorder_files(["b.txt", "a.txt", "secret.txt"])

    html = compiler.render(paste)

    assert html.index("bravo") < html.index("alpha")
    assert "hidden text" not in html
    assert paste.html_path.read_text(encoding="utf-8") == html


def test_single_mode_renders_only_selected_file(compiler, paste):
    paste.update({"display_mode": "single-normal", "selected_file": "b.txt"})
    assert compiler.selected_files(paste) == ["b.txt"]
    html = compiler.render(paste)
    assert "bravo" in html
    assert "alpha" not in html


def test_single_mode_with_unknown_selection_falls_back_to_all(compiler, paste):
    paste.update({"display_mode": "single-normal", "selected_file": "gone.txt"})
    assert compiler.selected_files(paste) == ["a.txt", "b.txt"]


def test_markdown_file_is_rendered_into_document(compiler, paste):
    paste.add_file("readme.md", "# Welcome", FileEntry(render="rendered", type="markdown"))
    html = compiler.render(paste)
    assert '<h1 id="welcome">Welcome</h1>' in html


def test_document_escapes_metadata(compiler, store):
    paste = store.create({"title": "<b>bold</b>"}, paste_id="escaped")
    html = compiler.render(paste)
    assert "&lt;b&gt;bold&lt;/b&gt;" in html
    assert "<b>bold</b>" not in html


def test_missing_attachment_renders_error_fragment(compiler, paste):
    (paste.files_dir / "a.txt").unlink()
    html = compiler.render(paste)
    assert "File not found" in html


def test_text_download_gets_inline_preview(compiler, paste):
    paste.add_file("notes.log", b"log line", FileEntry(render="file-link", type="file-link"))
    paste.add_file("blob.bin", bytes(64), FileEntry(render="file", type="file"))
    rendered = {name: compiler.render_file(paste, name) for name in ("notes.log", "blob.bin")}
    assert rendered["notes.log"].preview == "log line"
    assert rendered["blob.bin"].preview is None


def test_binary_download_gets_no_preview(compiler, paste, monkeypatch):
    paste.add_file("notes.log", b"log line", FileEntry(render="file-link", type="file-link"))
    monkeypatch.setattr(paste, "is_file_binary", lambda filename: True)
    assert compiler.render_file(paste, "notes.log").preview is None


def test_render_is_idempotent(compiler, paste):
    first = compiler.render(paste)
    second = compiler.render(paste)
    assert first == second


def test_render_removes_document_of_previous_title(compiler, paste):
    compiler.render(paste)
    old_path = paste.html_path
    paste.update({"title": "New Title"})
    compiler.render(paste)
    assert not old_path.exists()
    assert paste.html_path.name == "new_title.html"
    assert paste.html_path.exists()


def test_ensure_rendered_only_builds_when_missing(compiler, paste):
    path = compiler.ensure_rendered(paste)
    assert path.exists()
    path.write_text("cached", encoding="utf-8")
    assert compiler.ensure_rendered(paste).read_text(encoding="utf-8") == "cached"


def test_render_all_reports_per_paste(compiler, store, paste):
    other = store.create({"title": "Other"}, paste_id="other")
    other.add_file("x.txt", b"x")
    results = compiler.render_all(store)
    assert {r.item: r.success for r in results} == {"two-files": True, "other": True}
    assert {r.title for r in results} == {"Two Files", "Other"}
    assert other.html_path.exists()


def test_render_all_continues_past_failures(compiler, store, paste, monkeypatch):
    store.create({"title": "Fine"}, paste_id="fine")
    original = compiler.render

    def flaky(p):
        if p.id == "two-files":
            raise StorageIOError("disk full")
        return original(p)

    monkeypatch.setattr(compiler, "render", flaky)
    results = {r.item: r for r in compiler.render_all(store)}
    assert results["two-files"].success is False
    assert results["two-files"].error == "disk full"
    assert results["fine"].success is True


def test_render_failure_does_not_leave_partial_document(compiler, paste, monkeypatch):
    compiler.render(paste)
    before = paste.html_path.read_text(encoding="utf-8")

    def broken(p):
        raise StorageIOError("boom")

    monkeypatch.setattr(compiler, "render_html", broken)
    with pytest.raises(StorageIOError):
        compiler.render(paste)
    assert paste.html_path.read_text(encoding="utf-8") == before
