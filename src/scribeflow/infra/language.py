from __future__ import annotations

AUTO_LANGUAGE = "auto"

# Language codes accepted by the whisper CLI `--language` flag.
SUPPORTED_LANGUAGES: tuple[str, ...] = (
    "af", "am", "ar", "as", "az", "ba", "be", "bg", "bn", "bo", "br", "bs",
    "ca", "cs", "cy", "da", "de", "el", "en", "es", "et", "eu", "fa", "fi",
    "fo", "fr", "gl", "gu", "ha", "haw", "he", "hi", "hr", "ht", "hu", "hy",
    "id", "is", "it", "ja", "jw", "ka", "kk", "km", "kn", "ko", "la", "lb",
    "ln", "lo", "lt", "lv", "mg", "mi", "mk", "ml", "mn", "mr", "ms", "mt",
    "my", "ne", "nl", "nn", "no", "oc", "pa", "pl", "ps", "pt", "ro", "ru",
    "sa", "sd", "si", "sk", "sl", "sn", "so", "sq", "sr", "su", "sv", "sw",
    "ta", "te", "tg", "th", "tk", "tl", "tr", "tt", "uk", "ur", "uz", "vi",
    "yi", "yo", "yue", "zh",
)

_SUPPORTED_LANGUAGE_SET = frozenset(SUPPORTED_LANGUAGES)


def is_auto(language: str | None) -> bool:
    return not language or language == AUTO_LANGUAGE


def normalize_language(language: str) -> str:
    value = language.strip().lower()
    if not value:
        raise ValueError("Language must not be empty.")
    if value == AUTO_LANGUAGE or value in _SUPPORTED_LANGUAGE_SET:
        return value
    raise ValueError(
        f"Unsupported language '{language}'. Use 'auto' or a code such as en, es, fr, ja."
    )
