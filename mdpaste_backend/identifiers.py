from __future__ import annotations

import logging
import secrets
from typing import Callable

from .config import ID_ALPHABET, ID_GENERATION_ATTEMPTS, ID_MAX_LENGTH, ID_MIN_LENGTH
from .errors import IdentifierConflictError

logger = logging.getLogger(__name__)


def random_identifier() -> str:
    length = ID_MIN_LENGTH + secrets.randbelow(ID_MAX_LENGTH - ID_MIN_LENGTH + 1)
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


def generate_identifier(
    in_use: Callable[[str], bool],
    attempts: int = ID_GENERATION_ATTEMPTS,
) -> str:
    """Return a random id for which ``in_use`` is false.

    Uniqueness is checked optimistically against the directory listing, so a
    collision only costs another draw.
    """
    for _ in range(attempts):
        candidate = random_identifier()
        if not in_use(candidate):
            return candidate
        logger.debug("Generated id %s already in use, retrying", candidate)
    raise IdentifierConflictError(f"Failed to generate unique ID after {attempts} attempts")
