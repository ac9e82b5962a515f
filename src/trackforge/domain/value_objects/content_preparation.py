"""Mapping of a generation request onto the lyrics/prompt pair providers expect.

Hey future me - providers take two text fields: ``lyrics`` (what is sung) and
``prompt`` (style/description). Users give us one of three shapes: an
instrumental request, their own lyrics, or a free-text description. The
decision order below matters and is covered by tests:

1. instrumental wins over everything (even if lyrics were typed)
2. lyrics mode with actual text sends it verbatim
3. lyrics mode WITHOUT text asks the provider to write lyrics from the prompt
4. description mode lets the provider write lyrics from the description

Usage:
    from trackforge.domain.value_objects.content_preparation import prepare_content

    prepared = prepare_content(request)
    payload = provider.build_payload(request, prepared)
"""

from trackforge.domain.value_objects import (
    ContentSource,
    GenerationRequest,
    InputMode,
    PreparedContent,
)

INSTRUMENTAL_LYRICS = "[Instrumental]"
AUTO_LYRICS = "[Auto-generated lyrics based on prompt]"
LYRICS_INSTRUCTION_TEMPLATE = "[Generate lyrics: {prompt}]"
LYRICS_INSTRUCTION_FALLBACK = "[Generate lyrics for a song]"

DEFAULT_INSTRUMENTAL_PROMPT = "Instrumental music"
DEFAULT_VOCAL_PROMPT = "Pop music with vocals"
DEFAULT_DESCRIPTION_PROMPT = "Creative music composition"


def _clean(value: str | None) -> str:
    return (value or "").strip()


def prepare_content(request: GenerationRequest) -> PreparedContent:
    """Decide the lyrics and prompt for a request.

    Pure and deterministic: same request, same result.

    Args:
        request: The caller's generation request

    Returns:
        PreparedContent with trimmed lyrics and prompt
    """
    style = _clean(request.style)
    prompt = _clean(request.prompt)
    user_lyrics = _clean(request.lyrics) or _clean(request.custom_lyrics)

    if request.instrumental:
        return PreparedContent(
            lyrics=INSTRUMENTAL_LYRICS,
            prompt=style or prompt or DEFAULT_INSTRUMENTAL_PROMPT,
            source=ContentSource.INSTRUMENTAL,
        )

    if request.input_mode == InputMode.LYRICS:
        if user_lyrics:
            return PreparedContent(
                lyrics=user_lyrics,
                prompt=style or DEFAULT_VOCAL_PROMPT,
                source=ContentSource.USER_LYRICS,
            )
        instruction = (
            LYRICS_INSTRUCTION_TEMPLATE.format(prompt=prompt)
            if prompt
            else LYRICS_INSTRUCTION_FALLBACK
        )
        return PreparedContent(
            lyrics=instruction,
            prompt=style or DEFAULT_VOCAL_PROMPT,
            source=ContentSource.LYRICS_PLACEHOLDER,
        )

    return PreparedContent(
        lyrics=AUTO_LYRICS,
        prompt=prompt or style or DEFAULT_DESCRIPTION_PROMPT,
        source=ContentSource.AUTO_LYRICS,
    )


def is_placeholder_lyrics(lyrics: str | None) -> bool:
    """True when lyrics are one of our sentinels rather than real text."""
    text = _clean(lyrics)
    if not text:
        return True
    return text in (INSTRUMENTAL_LYRICS, AUTO_LYRICS, LYRICS_INSTRUCTION_FALLBACK) or (
        text.startswith("[Generate lyrics:") and text.endswith("]")
    )
