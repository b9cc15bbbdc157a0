"""Backend for mdpaste: multi-file pastes rendered to static HTML.

This package intentionally keeps FastAPI route handlers thin:
- paste record store (one directory per paste, aliases as pointer dirs)
- content rendering per attachment and the cached document per paste
- htpasswd login gate

Paste ids are public URLs; the store validates them strictly because they are
also directory names under the notes root.
"""
