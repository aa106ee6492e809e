"""Text language identification."""

from __future__ import annotations

from functools import lru_cache


@lru_cache(maxsize=1)
def _detector():
    try:
        from lingua import LanguageDetectorBuilder
    except ImportError:
        raise ImportError(
            "lingua-language-detector is required for language detection. "
            "Install with: pip install lingua-language-detector"
        ) from None

    return LanguageDetectorBuilder.from_all_languages().build()


def detect_language(text: str) -> str | None:
    """Return the ISO 639-1 code of the text's language, or None if undetermined."""
    if not text.strip():
        return None
    language = _detector().detect_language_of(text)
    if language is None:
        return None
    return language.iso_code_639_1.name.lower()
