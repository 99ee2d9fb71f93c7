"""
Unit tests for slug allocation.

Tests cover:
- Base slug derivation
- Collision handling with random suffixes
- Timestamp fallback after exhausted attempts
"""

import random
import re
from unittest.mock import AsyncMock

import pytest

from sdk.entbase_sdk.errors import ValidationError
from sdk.entbase_sdk.slug import (
    MAX_ATTEMPTS,
    allocate_unique_slug,
    generate_slug,
    random_suffix,
    to_base36,
)


class TestGenerateSlug:
    """Tests for generate_slug."""

    def test_punctuation_and_spaces(self):
        """Runs of non-alphanumerics collapse to one hyphen."""
        assert generate_slug("Hello, World!") == "hello-world"

    def test_trims_and_strips_hyphens(self):
        """Leading and trailing separators are removed."""
        assert generate_slug("  --Acme   Corp--  ") == "acme-corp"

    def test_non_ascii_is_separator(self):
        """Characters outside [a-z0-9] act as separators."""
        assert generate_slug("Café Müller") == "caf-m-ller"

    def test_truncates_to_100(self):
        """Slugs are cut at 100 characters."""
        assert len(generate_slug("a" * 150)) == 100

    def test_only_symbols_gives_empty(self):
        """A name without alphanumerics yields an empty slug."""
        assert generate_slug("!!!") == ""

    @pytest.mark.parametrize("bad", ["", None, 42, ["a"]])
    def test_rejects_empty_or_non_text(self, bad):
        """Empty or non-string names are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            generate_slug(bad)
        assert exc_info.value.field_name == "name"


class TestHelpers:
    """Tests for suffix and base36 helpers."""

    def test_random_suffix_shape(self):
        """Suffix is four lowercase alphanumerics."""
        suffix = random_suffix(random.Random(7))
        assert re.fullmatch(r"[a-z0-9]{4}", suffix)

    def test_base36(self):
        """Base36 encoding matches the usual digits."""
        assert to_base36(0) == "0"
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"
        assert to_base36(1295) == "zz"


class TestAllocateUniqueSlug:
    """Tests for allocate_unique_slug."""

    @pytest.mark.asyncio
    async def test_free_base_slug(self):
        """An unused base slug is returned after one lookup."""
        exists = AsyncMock(return_value=False)

        slug = await allocate_unique_slug("Hello, World!", "schema_1", exists)

        assert slug == "hello-world"
        exists.assert_awaited_once_with("hello-world", "schema_1")

    @pytest.mark.asyncio
    async def test_collision_appends_suffix(self):
        """A taken base gets a four character suffix on the next attempt."""
        exists = AsyncMock(side_effect=[True, False])

        slug = await allocate_unique_slug("Hello, World!", "schema_1", exists)

        assert re.fullmatch(r"hello-world-[a-z0-9]{4}", slug)
        assert exists.await_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_attempts_fall_back_to_timestamp(self):
        """After every attempt collides the timestamp suffix is used unchecked."""
        exists = AsyncMock(return_value=True)

        slug = await allocate_unique_slug("Hello, World!", "schema_1", exists)

        assert re.fullmatch(r"hello-world-[a-z0-9]+", slug)
        assert slug != "hello-world"
        assert exists.await_count == MAX_ATTEMPTS

    @pytest.mark.asyncio
    async def test_seeded_rng_is_deterministic(self):
        """Same seed, same suffix."""
        first = await allocate_unique_slug(
            "Acme", "s", AsyncMock(side_effect=[True, False]), random.Random(1)
        )
        second = await allocate_unique_slug(
            "Acme", "s", AsyncMock(side_effect=[True, False]), random.Random(1)
        )
        assert first == second

    @pytest.mark.asyncio
    async def test_invalid_name_does_not_look_up(self):
        """Validation happens before any store access."""
        exists = AsyncMock(return_value=False)

        with pytest.raises(ValidationError):
            await allocate_unique_slug("", "schema_1", exists)

        exists.assert_not_awaited()
