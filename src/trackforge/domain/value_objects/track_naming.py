"""Title heuristics for generated tracks.

Providers often return no title, or a useless one like "AI Generated Track".
We fall back to the first sung line of the lyrics, then to a generic label.
Title de-duplication within a project lives in the catalog store because it
needs the existing titles; ``dedupe_title`` here is the pure part of it.
"""

import re

GENERIC_TITLE = "Generated Track"
MAX_TITLE_LENGTH = 50
MIN_LINE_LENGTH = 10

_SECTION_LINE = re.compile(
    r"\[(?:Verse|Intro|Chorus|Pre-Chorus|Bridge|Hook|Outro)\s*\d*\]?\s*\n(.+)",
    re.IGNORECASE,
)
# Lines that read like instructions to the model rather than lyrics
_INSTRUCTION_WORDS = ("create", "generate", "make a song", "write a song")
_PLACEHOLDER_TITLES = {"", "ai generated track", "untitled", GENERIC_TITLE.lower()}


def title_from_lyrics(lyrics: str | None) -> str | None:
    """Pick a meaningful line out of lyrics.

    Prefers the first line after a section tag such as ``[Verse]``. Otherwise
    takes the first untagged line longer than ten characters that doesn't look
    like a prompt instruction.
    """
    if not lyrics:
        return None

    match = _SECTION_LINE.search(lyrics)
    if match and match.group(1).strip():
        return match.group(1).strip()[:MAX_TITLE_LENGTH]

    for line in lyrics.splitlines():
        candidate = line.strip()
        if not candidate or "[" in candidate or len(candidate) <= MIN_LINE_LENGTH:
            continue
        if any(word in candidate.lower() for word in _INSTRUCTION_WORDS):
            continue
        return candidate[:MAX_TITLE_LENGTH]
    return None


def variant_title(
    provider_title: str | None,
    lyrics: str | None,
    variant_number: int,
    fallback: str | None = None,
) -> str:
    """Build the title for one variant of a generation.

    Args:
        provider_title: Title the provider reported, if any
        lyrics: Lyrics or prompt text used for the heuristic
        variant_number: 1-based variant index
        fallback: Label used when neither title nor lyrics help

    Returns:
        Title with a " (variant N)" suffix for N > 1
    """
    title = (provider_title or "").strip()
    if title.lower().startswith("ai generated track") or title.lower() in _PLACEHOLDER_TITLES:
        title = title_from_lyrics(lyrics) or (fallback or "").strip() or GENERIC_TITLE

    if variant_number > 1:
        title = f"{title} (variant {variant_number})"
    return title


def title_from_job(metadata_title: str | None, style: str | None, prompt: str | None) -> str:
    """Title for a single-result job: explicit title, style, first prompt line, or generic."""
    for candidate in (metadata_title, style):
        if candidate and candidate.strip():
            return candidate.strip()[:MAX_TITLE_LENGTH]
    if prompt:
        first_line = prompt.strip().splitlines()[0].strip() if prompt.strip() else ""
        if first_line:
            return first_line[:MAX_TITLE_LENGTH]
    return GENERIC_TITLE


def dedupe_title(title: str, existing_titles: list[str] | set[str]) -> str:
    """Append " (2)", " (3)", ... until the title is unique, ignoring case."""
    taken = {existing.lower() for existing in existing_titles}
    if title.lower() not in taken:
        return title
    suffix = 2
    while f"{title} ({suffix})".lower() in taken:
        suffix += 1
    return f"{title} ({suffix})"
