from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse, Response
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.datastructures import UploadFile

from mdpaste_backend.auth import HtpasswdAuth, current_user, require_user
from mdpaste_backend.compiler import PasteCompiler
from mdpaste_backend.config import BASE_PATH, HTPASSWD_PATH, MAX_UPLOAD_BYTES, NOTES_ROOT
from mdpaste_backend.errors import (
    IdentifierConflictError,
    InvalidIdentifierError,
    NotAssociatedError,
    PasteNotFoundError,
    StorageIOError,
)
from mdpaste_backend.logger import configure_logging
from mdpaste_backend.renderer import guess_mime_type, needs_attachment_disposition
from mdpaste_backend.security import normalize_identifier
from mdpaste_backend.store import Paste, PasteStore
from mdpaste_backend.submission import PasteForm, Upload, apply_submission, populate_new_paste

logger = logging.getLogger("mdpaste.server")


class AliasValidateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    alias_id: Optional[str] = Field(None, alias="aliasId")


def get_store(request: Request) -> PasteStore:
    return request.app.state.store


def get_compiler(request: Request) -> PasteCompiler:
    return request.app.state.compiler


def _display_author(user: str | None) -> str | None:
    # "alice" -> "Alice"
    if not user:
        return None
    return user[:1].upper() + user[1:]


def _summary(paste: Paste) -> dict:
    meta = paste.meta
    return {
        "id": paste.id,
        "title": paste.title,
        "summary": meta.summary,
        "author": meta.author,
        "public": meta.public,
        "createdAt": meta.created_at,
        "updatedAt": meta.updated_at,
        "url": paste.html_url,
    }


def _existing_paste(store: PasteStore, paste_id: str) -> Paste:
    # View routes answer 404 for anything that is not a paste, including malformed ids.
    if not store.exists(paste_id):
        raise HTTPException(status_code=404, detail="Not found")
    return store.load(paste_id)


async def _read_submission(request: Request) -> tuple[PasteForm, dict[int, Upload]]:
    """Parse a create/edit submission.

    JSON bodies carry the form directly. Multipart bodies carry it as a
    ``payload`` JSON field plus ``upload_<index>`` file parts, where index is
    the position of the matching entry in ``files``.
    """
    limit = request.app.state.max_upload_bytes
    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith("application/json"):
            return PasteForm.model_validate_json(await request.body()), {}

        form = await request.form()
        raw = form.get("payload")
        if not isinstance(raw, str):
            raise HTTPException(status_code=400, detail="Missing payload")
        paste_form = PasteForm.model_validate_json(raw)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid payload")

    uploads: dict[int, Upload] = {}
    for key, value in form.multi_items():
        if not key.startswith("upload_") or not isinstance(value, UploadFile):
            continue
        index = key[len("upload_"):]
        if not index.isdigit() or not value.filename:
            continue
        # Limit read to prevent accidental huge uploads.
        data = await value.read(limit + 1)
        if len(data) > limit:
            raise HTTPException(status_code=413, detail="File too large")
        uploads[int(index)] = Upload(data=data, content_type=value.content_type)
    return paste_form, uploads


router = APIRouter()


@router.get("/")
async def home(request: Request) -> RedirectResponse:
    return RedirectResponse(f"{request.app.state.base_path}/api/notes")


@router.get("/api/notes")
async def list_notes(
    store: PasteStore = Depends(get_store),
    user: Optional[str] = Depends(current_user),
) -> JSONResponse:
    # Anonymous visitors only see public pastes.
    pastes = store.list_all(public_only=user is None)
    return JSONResponse({"pastes": [_summary(p) for p in pastes], "currentUser": user})


@router.post("/api/notes")
async def create_note(
    request: Request,
    user: str = Depends(require_user),
    store: PasteStore = Depends(get_store),
    compiler: PasteCompiler = Depends(get_compiler),
) -> JSONResponse:
    form, uploads = await _read_submission(request)
    paste = store.create(form.paste_fields(_display_author(user)), paste_id=form.id or None)
    populate_new_paste(paste, form, uploads)
    compiler.render(paste)
    return JSONResponse({"id": paste.id, "url": paste.html_url}, status_code=201)


@router.post("/api/notes/rerender-all")
async def rerender_all(
    user: str = Depends(require_user),
    store: PasteStore = Depends(get_store),
    compiler: PasteCompiler = Depends(get_compiler),
) -> JSONResponse:
    results = compiler.render_all(store)
    return JSONResponse({"results": [r.to_dict() for r in results]})


@router.get("/api/notes/{paste_id}")
async def get_note(
    paste_id: str,
    user: str = Depends(require_user),
    store: PasteStore = Depends(get_store),
) -> JSONResponse:
    paste = store.load_resolved(paste_id)
    return JSONResponse({"id": paste.id, "url": paste.html_url, "meta": paste.meta.to_json_dict()})


@router.post("/api/notes/{paste_id}/edit")
async def edit_note(
    paste_id: str,
    request: Request,
    user: str = Depends(require_user),
    store: PasteStore = Depends(get_store),
    compiler: PasteCompiler = Depends(get_compiler),
) -> Response:
    real_id = store.get_real_id(paste_id)
    if not store.exists(real_id):
        raise PasteNotFoundError(f"Paste '{paste_id}' not found")
    if real_id != paste_id:
        # Edits always go to the canonical id; 307 keeps the method and body.
        return RedirectResponse(f"{request.app.state.base_path}/api/notes/{real_id}/edit", status_code=307)

    paste = store.load(real_id)
    form, uploads = await _read_submission(request)
    alias_results = apply_submission(paste, form, uploads, default_author=_display_author(user))
    compiler.render(paste)
    return JSONResponse(
        {"id": paste.id, "url": paste.html_url, "aliases": [r.to_dict() for r in alias_results]}
    )


@router.post("/api/notes/{paste_id}/delete")
async def delete_note(
    paste_id: str,
    user: str = Depends(require_user),
    store: PasteStore = Depends(get_store),
) -> JSONResponse:
    paste = store.load_resolved(paste_id)
    paste.delete()
    return JSONResponse({"ok": True, "id": paste.id})


@router.post("/api/notes/{paste_id}/rerender")
async def rerender_note(
    paste_id: str,
    user: str = Depends(require_user),
    store: PasteStore = Depends(get_store),
    compiler: PasteCompiler = Depends(get_compiler),
) -> JSONResponse:
    paste = store.load_resolved(paste_id)
    compiler.render(paste)
    return JSONResponse({"id": paste.id, "url": paste.html_url})


@router.post("/api/notes/{paste_id}/alias/generate")
async def generate_alias(
    paste_id: str,
    user: str = Depends(require_user),
    store: PasteStore = Depends(get_store),
) -> JSONResponse:
    """Propose a free alias id without creating it."""
    if not store.exists(store.get_real_id(paste_id)):
        return JSONResponse({"success": False, "error": "Paste not found"}, status_code=404)
    try:
        alias_id = store.generate_id()
    except IdentifierConflictError as e:
        return JSONResponse({"success": False, "error": str(e)})
    return JSONResponse({"success": True, "aliasId": alias_id})


@router.post("/api/notes/{paste_id}/alias/validate")
async def validate_alias(
    paste_id: str,
    payload: AliasValidateRequest,
    user: str = Depends(require_user),
    store: PasteStore = Depends(get_store),
) -> JSONResponse:
    """Check a proposed alias id (format and availability) without creating it."""
    if not store.exists(store.get_real_id(paste_id)):
        return JSONResponse({"success": False, "error": "Paste not found"}, status_code=404)
    if not payload.alias_id:
        return JSONResponse({"success": False, "error": "Alias ID required"})
    try:
        alias_id = normalize_identifier(payload.alias_id)
    except InvalidIdentifierError as e:
        return JSONResponse({"success": False, "error": str(e)})
    if store.id_in_use(alias_id):
        return JSONResponse({"success": False, "error": "Alias ID already exists"})
    return JSONResponse({"success": True, "aliasId": alias_id})


@router.get("/notes")
async def notes_index(request: Request) -> RedirectResponse:
    return RedirectResponse(f"{request.app.state.base_path}/")


@router.get("/notes/{paste_id}/files/{filename}")
async def get_note_file(
    paste_id: str,
    filename: str,
    request: Request,
    store: PasteStore = Depends(get_store),
) -> Response:
    """Serve raw attachment bytes.

    Only `file` attachments that browsers would not display inline are sent
    as downloads.
    """
    parent = store.resolve_alias(paste_id)
    if parent:
        return RedirectResponse(
            f"{request.app.state.base_path}/notes/{parent}/files/{quote(filename, safe='')}",
            status_code=301,
        )

    paste = _existing_paste(store, paste_id)
    path = paste.get_file_path(filename)
    if path is None:
        raise HTTPException(status_code=404, detail="Not found")

    mime = guess_mime_type(filename)
    headers = {"X-Content-Type-Options": "nosniff"}
    entry = paste.files.get(filename)
    if entry is not None and needs_attachment_disposition(entry.render, mime):
        return FileResponse(path, media_type=mime, filename=filename, headers=headers)
    return FileResponse(path, media_type=mime, headers=headers)


@router.get("/notes/{paste_id}/{document}")
async def get_note_document(
    paste_id: str,
    document: str,
    request: Request,
    store: PasteStore = Depends(get_store),
    compiler: PasteCompiler = Depends(get_compiler),
) -> Response:
    """Serve the cached HTML document, building it first if it is missing."""
    parent = store.resolve_alias(paste_id)
    if parent:
        return RedirectResponse(f"{request.app.state.base_path}/notes/{parent}/{document}", status_code=301)

    paste = _existing_paste(store, paste_id)
    if document != f"{paste.slug}.html":
        return RedirectResponse(paste.html_url, status_code=301)

    path = compiler.ensure_rendered(paste)
    return FileResponse(path, media_type="text/html")


@router.get("/notes/{paste_id}")
@router.get("/notes/{paste_id}/{rest:path}")
async def view_note(
    paste_id: str,
    request: Request,
    rest: str = "",
    store: PasteStore = Depends(get_store),
) -> RedirectResponse:
    """Any other paste URL lands on the paste's document."""
    parent = store.resolve_alias(paste_id)
    if parent:
        suffix = f"/{rest}" if rest else ""
        return RedirectResponse(f"{request.app.state.base_path}/notes/{parent}{suffix}", status_code=301)
    paste = _existing_paste(store, paste_id)
    return RedirectResponse(paste.html_url, status_code=301)


async def _not_found(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse({"detail": "Not found"}, status_code=404)


async def _bad_request(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=400)


async def _conflict(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=409)


async def _internal_error(request: Request, exc: Exception) -> JSONResponse:
    # Never leak filesystem paths; the details go to the log.
    logger.error("Request %s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


def create_app(
    notes_root: Path | str = NOTES_ROOT,
    htpasswd_path: Path | str = HTPASSWD_PATH,
    base_path: str = BASE_PATH,
    max_upload_bytes: int = MAX_UPLOAD_BYTES,
) -> FastAPI:
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Finish any alias promotion a crash interrupted before serving requests.
        for result in app.state.store.recover_interrupted_promotions():
            if not result.success:
                logger.error("Promotion recovery failed for %s: %s", result.item, result.error)
        yield

    app = FastAPI(lifespan=lifespan)
    app.state.base_path = (base_path or "").rstrip("/")
    app.state.store = PasteStore(notes_root, base_path=app.state.base_path)
    app.state.compiler = PasteCompiler(base_path=app.state.base_path)
    app.state.auth = HtpasswdAuth(htpasswd_path)
    app.state.max_upload_bytes = max_upload_bytes

    app.add_exception_handler(PasteNotFoundError, _not_found)
    app.add_exception_handler(InvalidIdentifierError, _bad_request)
    app.add_exception_handler(NotAssociatedError, _bad_request)
    app.add_exception_handler(IdentifierConflictError, _conflict)
    app.add_exception_handler(StorageIOError, _internal_error)

    @app.middleware("http")
    async def _no_cache_documents(request: Request, call_next):
        response = await call_next(request)
        # Documents are re-rendered on every edit; make browsers revalidate.
        if request.url.path.endswith(".html"):
            response.headers["Cache-Control"] = "no-cache"
        return response

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    port = int(os.environ.get("PORT", "8010"))
    uvicorn.run("server:app", host="127.0.0.1", port=port, reload=False)
