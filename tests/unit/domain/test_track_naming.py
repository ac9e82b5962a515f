"""Tests for generated track title heuristics."""

import pytest

from trackforge.domain.value_objects.track_naming import (
    GENERIC_TITLE,
    dedupe_title,
    title_from_job,
    title_from_lyrics,
    variant_title,
)


class TestTitleFromLyrics:
    """Test picking a title line out of lyrics."""

    def test_prefers_line_after_section_tag(self) -> None:
        lyrics = "[Intro]\nNeon rain on empty streets\n[Chorus]\nWe drive"
        assert title_from_lyrics(lyrics) == "Neon rain on empty streets"

    def test_skips_short_and_tagged_lines(self) -> None:
        lyrics = "oh\n(la)[x]\nHeadlights fading into blue"
        assert title_from_lyrics(lyrics) == "Headlights fading into blue"

    def test_skips_instruction_lines(self) -> None:
        lyrics = "Create a song about summer\nSunlight on the water line"
        assert title_from_lyrics(lyrics) == "Sunlight on the water line"

    def test_truncates_to_fifty_characters(self) -> None:
        lyrics = "x" * 80
        assert title_from_lyrics(lyrics) == "x" * 50

    @pytest.mark.parametrize("lyrics", [None, "", "short\n[Verse]"])
    def test_returns_none_without_usable_line(self, lyrics: str | None) -> None:
        assert title_from_lyrics(lyrics) is None


class TestVariantTitle:
    """Test variant title construction."""

    def test_provider_title_kept_for_first_variant(self) -> None:
        assert variant_title("Night Drive", None, 1) == "Night Drive"

    def test_suffix_added_for_later_variants(self) -> None:
        assert variant_title("Night Drive", None, 3) == "Night Drive (variant 3)"

    def test_placeholder_title_replaced_by_lyrics_line(self) -> None:
        title = variant_title("AI Generated Track", "[Verse]\nCity of a thousand lights", 1)
        assert title == "City of a thousand lights"

    def test_falls_back_to_fallback_then_generic(self) -> None:
        assert variant_title(None, None, 1, fallback="synthwave") == "synthwave"
        assert variant_title(None, None, 2) == f"{GENERIC_TITLE} (variant 2)"


class TestTitleFromJob:
    def test_explicit_title_wins(self) -> None:
        assert title_from_job("My Song", "rock", "prompt") == "My Song"

    def test_style_before_prompt(self) -> None:
        assert title_from_job(None, "rock", "prompt") == "rock"

    def test_first_prompt_line(self) -> None:
        assert title_from_job(None, None, "first line\nsecond line") == "first line"

    def test_generic_when_empty(self) -> None:
        assert title_from_job(None, " ", "") == GENERIC_TITLE


class TestDedupeTitle:
    def test_unique_title_unchanged(self) -> None:
        assert dedupe_title("Song", ["Other"]) == "Song"

    def test_case_insensitive_collision_gets_suffix(self) -> None:
        assert dedupe_title("Song", ["song", "Song (2)"]) == "Song (3)"
