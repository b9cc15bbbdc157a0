"""Errors raised by the paste store and its collaborators."""
from __future__ import annotations


class PasteError(Exception):
    """Base class for every store/render failure the HTTP layer knows how to map."""


class PasteNotFoundError(PasteError, FileNotFoundError):
    """No paste (or alias) lives under the requested identifier."""


class IdentifierConflictError(PasteError):
    """The identifier is already taken by a paste or an alias."""


class InvalidIdentifierError(PasteError, ValueError):
    """Identifier or filename fails the allowed-character rules."""


class NotAssociatedError(PasteError):
    """The alias does not belong to the paste it was used with."""


class StorageIOError(PasteError, OSError):
    """A write, rename or delete on the notes directory failed."""
