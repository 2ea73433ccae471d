"""Input language detection for the output-language directive.

Detection is script based: the first script that appears in the request
decides.  Latin-script input maps to the configured default language, for
which no directive is added.
"""

import re

from appsynth.config import settings

# Letters used in Persian but not in Arabic
_PERSIAN_ONLY_RE = re.compile(r"[پچژگکی]")

_SCRIPTS: list[tuple[str, re.Pattern]] = [
    ("ar", re.compile(r"[؀-ۿ]")),
    ("he", re.compile(r"[֐-׿]")),
    ("ru", re.compile(r"[Ѐ-ӿ]")),
    ("el", re.compile(r"[Ͱ-Ͽ]")),
    ("hi", re.compile(r"[ऀ-ॿ]")),
    ("th", re.compile(r"[฀-๿]")),
    ("ko", re.compile(r"[가-힯]")),
    ("ja", re.compile(r"[぀-ヿ]")),
    ("zh", re.compile(r"[一-鿿]")),
]

LANGUAGE_NAMES: dict[str, str] = {
    "en": "English",
    "fa": "Persian (Farsi)",
    "ar": "Arabic",
    "he": "Hebrew",
    "ru": "Russian",
    "el": "Greek",
    "hi": "Hindi",
    "th": "Thai",
    "ko": "Korean",
    "ja": "Japanese",
    "zh": "Chinese",
}

RTL_LANGUAGES = frozenset({"fa", "ar", "he"})


def detect_language(text: str) -> str:
    """Return a language code for *text*.

    Kana is checked before Han so Japanese text with kanji is not
    reported as Chinese.
    """
    if not text:
        return settings.DEFAULT_OUTPUT_LANGUAGE
    for code, pattern in _SCRIPTS:
        if pattern.search(text):
            if code == "ar" and _PERSIAN_ONLY_RE.search(text):
                return "fa"
            return code
    return settings.DEFAULT_OUTPUT_LANGUAGE


def language_directive(code: str) -> str:
    """Instruction prefix for a non-default output language ("" otherwise)."""
    if not code or code == settings.DEFAULT_OUTPUT_LANGUAGE:
        return ""
    name = LANGUAGE_NAMES.get(code, code)
    directive = (
        f"OUTPUT LANGUAGE: The user writes in {name}. Write every user-facing "
        f"string (UI copy, labels, chat replies) in {name}. Keep code, file "
        f"paths and JSON keys in English."
    )
    if code in RTL_LANGUAGES:
        directive += ' Lay the UI out right-to-left (dir="rtl").'
    return directive
