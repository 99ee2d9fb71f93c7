"""
Slug allocation for EntBase SDK.

Slugs are URL-safe keys derived from an instance's display name, unique
within one entity type.

Invariants:
    - generate_slug output matches ^[a-z0-9]+(-[a-z0-9]+)*$ or is empty
      when the name has no alphanumerics
    - Slugs are at most MAX_SLUG_LENGTH characters before any suffix
    - allocate_unique_slug checks at most MAX_ATTEMPTS slugs, then returns
      base-<base36 ms timestamp> without a final check
"""

from __future__ import annotations

import logging
import random
import re
import string
import time
from typing import Any, Awaitable, Callable, Optional

from .errors import ValidationError

logger = logging.getLogger(__name__)

MAX_SLUG_LENGTH = 100
MAX_ATTEMPTS = 100
SUFFIX_LENGTH = 4

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_ALPHABET = string.ascii_lowercase + string.digits
_BASE36 = string.digits + string.ascii_lowercase

SlugExists = Callable[[str, str], Awaitable[bool]]


def generate_slug(name: Any) -> str:
    """Derive the base slug from a display name.

    Example:
        >>> generate_slug("Hello, World!")
        'hello-world'

    Raises:
        ValidationError: If name is empty or not a string
    """
    if not isinstance(name, str) or not name:
        raise ValidationError("name", "Name must be a non-empty string")
    slug = _NON_ALNUM.sub("-", name.lower().strip())
    return slug.strip("-")[:MAX_SLUG_LENGTH]


def random_suffix(rng: Optional[random.Random] = None) -> str:
    """Four random lowercase alphanumerics."""
    choice = (rng or random).choice
    return "".join(choice(_ALPHABET) for _ in range(SUFFIX_LENGTH))


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


async def allocate_unique_slug(
    name: Any,
    schema_id: str,
    exists: SlugExists,
    rng: Optional[random.Random] = None,
) -> str:
    """Find a slug not yet used within the schema.

    Args:
        name: Display name to derive the slug from
        schema_id: Entity type the slug must be unique in
        exists: Async lookup (slug, schema_id) -> bool
        rng: Random source for suffixes

    Returns:
        The base slug, a suffixed variant, or the timestamp fallback

    Raises:
        ValidationError: If name is empty or not a string
    """
    base = generate_slug(name)
    candidate = base

    for attempt in range(MAX_ATTEMPTS):
        if not await exists(candidate, schema_id):
            return candidate
        candidate = f"{base}-{random_suffix(rng)}"
        logger.debug(
            "Slug collision",
            extra={"schema_id": schema_id, "base": base, "attempt": attempt + 1},
        )

    fallback = f"{base}-{to_base36(int(time.time() * 1000))}"
    logger.warning(
        "Slug attempts exhausted, using timestamp suffix",
        extra={"schema_id": schema_id, "base": base, "slug": fallback},
    )
    return fallback
