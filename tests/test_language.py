"""Tests for input language detection and the output-language directive."""

import pytest

from appsynth.services.language import detect_language, language_directive


@pytest.mark.parametrize("text,expected", [
    ("Build me a todo app", "en"),
    ("", "en"),
    ("مرحبا بالعالم", "ar"),
    ("گل سرخ", "fa"),
    ("Привет мир", "ru"),
    ("שלום", "he"),
    ("こんにちは世界", "ja"),
    ("你好世界", "zh"),
    ("안녕하세요", "ko"),
])
def test_detect_language(text, expected):
    assert detect_language(text) == expected


def test_mixed_latin_and_script_detects_script():
    assert detect_language("Make a page that says Привет") == "ru"


def test_default_language_has_no_directive():
    assert language_directive("en") == ""
    assert language_directive("") == ""


def test_directive_names_language():
    directive = language_directive("ru")
    assert "Russian" in directive
    assert "rtl" not in directive


def test_rtl_directive():
    directive = language_directive("fa")
    assert "Persian" in directive
    assert 'dir="rtl"' in directive
