"""
Tests for structure-preserving translation and the translation client.
"""

import re
import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


CHAPTER_MARKUP = (
    '<h1 data-page="1" data-y-start="100" data-y-end="124" data-y-mid="112">Introduction</h1>\n'
    '<hr/>\n'
    '<p data-page="1" data-y-start="150" data-y-end="200" data-y-mid="175">Hello world</p>\n'
    '<figure data-page="1" data-y-mid="250"><img src="a.png" alt="Image page 1"/></figure>\n'
    '<p class="caption" data-page="1" data-y-start="300" data-y-end="310" data-y-mid="305">Second part</p>'
)


def tags(markup):
    return re.findall(r"<[^>]+>", markup)


def failing_on(*bad):
    """Translation function that raises for chosen inputs and upper-cases the rest."""
    calls = []

    def translate(text):
        calls.append(text)
        if text in bad:
            raise ConnectionError(f"network down for {text}")
        return text.upper()

    translate.calls = calls
    return translate


@pytest.fixture
def config():
    from reflow.translation import TranslationConfig
    return TranslationConfig(delay_seconds=0)


class TestStructurePreservingTranslator:
    """Test the translator adapter."""

    def test_failed_span_keeps_original(self, config):
        """Test that one failure leaves that span unchanged and others translated."""
        from reflow.translation import StructurePreservingTranslator

        translate = failing_on("Introduction")
        translator = StructurePreservingTranslator(translate, config)

        result = translator.translate_markup(CHAPTER_MARKUP)

        assert ">Introduction</h1>" in result
        assert ">HELLO WORLD</p>" in result
        assert ">SECOND PART</p>" in result
        assert translator.stats.failed == 1
        assert translator.stats.translated == 2

    def test_structure_is_byte_identical(self, config):
        """Test that tags and attributes do not change."""
        from reflow.translation import StructurePreservingTranslator

        result = StructurePreservingTranslator(str.upper, config).translate_markup(CHAPTER_MARKUP)

        assert tags(result) == tags(CHAPTER_MARKUP)
        assert result.count("\n") == CHAPTER_MARKUP.count("\n")

    def test_spans_submitted_in_order(self, config):
        """Test one call per span, in document order."""
        from reflow.translation import StructurePreservingTranslator

        translate = failing_on()
        StructurePreservingTranslator(translate, config).translate_markup(CHAPTER_MARKUP)

        assert translate.calls == ["Introduction", "Hello world", "Second part"]

    def test_protected_only_markup_is_unchanged(self, config):
        """Test markup without translatable text."""
        from reflow.translation import StructurePreservingTranslator

        markup = (
            '<figure data-page="3"><img src="x.png" alt="Image page 3"/></figure>\n'
            '<hr/>\n<img src="y.png">\n<video src="v.mp4"/>'
        )
        translate = failing_on()

        result = StructurePreservingTranslator(translate, config).translate_markup(markup)

        assert result == markup
        assert translate.calls == []

    def test_short_text_not_translated(self, config):
        """Test the minimum text length."""
        from reflow.translation import StructurePreservingTranslator

        translate = failing_on()
        result = StructurePreservingTranslator(translate, config).translate_markup("<p>ok</p>")

        assert result == "<p>ok</p>"
        assert translate.calls == []

    def test_translated_text_is_escaped(self, config):
        """Test escaping of provider output and unescaping of input."""
        from reflow.translation import StructurePreservingTranslator

        seen = []

        def translate(text):
            seen.append(text)
            return "peixe & batatas <baratas>"

        result = StructurePreservingTranslator(translate, config).translate_markup(
            "<p>Fish &amp; chips</p>"
        )

        assert seen == ["Fish & chips"]
        assert result == "<p>peixe &amp; batatas &lt;baratas&gt;</p>"

    def test_nested_markup_left_alone(self, config):
        """Test that containers with inline tags are not flattened."""
        from reflow.translation import StructurePreservingTranslator

        markup = "<p>Hello <b>bold</b> world</p>"
        result = StructurePreservingTranslator(str.upper, config).translate_markup(markup)

        assert result == markup

    def test_empty_result_keeps_original(self, config):
        """Test that a blank provider answer counts as a failure."""
        from reflow.translation import StructurePreservingTranslator

        translator = StructurePreservingTranslator(lambda text: "  ", config)
        result = translator.translate_markup("<p>Hello world</p>")

        assert result == "<p>Hello world</p>"
        assert translator.stats.failed == 1

    def test_translate_chapter_translates_title(self, config):
        """Test rendered chapter translation."""
        from reflow.export import parse_markup, RenderedChapter
        from reflow.translation import StructurePreservingTranslator

        chapter = RenderedChapter("Introduction", tuple(parse_markup(CHAPTER_MARKUP)))
        translated = StructurePreservingTranslator(str.upper, config).translate_chapter(chapter)

        assert translated.title == "INTRODUCTION"
        assert [n.tag for n in translated.nodes] == [n.tag for n in chapter.nodes]
        assert translated.image_count == 1

    def test_translate_chapters_in_parallel(self):
        """Test that parallel translation keeps chapter order and isolates failures."""
        from reflow.export import MarkupBlock, RenderedChapter
        from reflow.translation import StructurePreservingTranslator, TranslationConfig

        chapters = [
            RenderedChapter(f"Chapter {i}", (MarkupBlock("p", text=f"text number {i}"),))
            for i in range(6)
        ]
        translator = StructurePreservingTranslator(
            failing_on("text number 3"),
            TranslationConfig(delay_seconds=0, max_workers=3)
        )

        result = translator.translate_chapters(chapters)

        assert [c.nodes[0].text for c in result] == [
            "TEXT NUMBER 0", "TEXT NUMBER 1", "TEXT NUMBER 2",
            "text number 3", "TEXT NUMBER 4", "TEXT NUMBER 5",
        ]
        assert translator.stats.submitted == 6
        assert translator.stats.failed == 1


class TestSplitText:
    """Test provider-side chunking."""

    def test_short_text_single_chunk(self):
        """Test text under the limit."""
        from reflow.translation import split_text

        assert split_text("short", 100) == ["short"]

    def test_chunks_respect_limit_and_rejoin(self):
        """Test paragraph and sentence splitting."""
        from reflow.translation import split_text

        text = "\n\n".join(["One sentence. Another sentence. " * 5] * 4)
        chunks = split_text(text, 120)

        assert "".join(chunks) == text
        assert all(len(c) <= 120 for c in chunks)
        assert len(chunks) > 1


class FakeResponse:
    def __init__(self, payload, status_ok=True):
        self.payload = payload
        self.status_ok = status_ok

    def raise_for_status(self):
        import requests
        if not self.status_ok:
            raise requests.exceptions.HTTPError("503 Service Unavailable")

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params, timeout))
        if self.error is not None:
            raise self.error
        return self.response


class TestGoogleTranslateClient:
    """Test the default translation client."""

    def test_translate_joins_segments(self):
        """Test response parsing and request parameters."""
        from reflow.translation import GoogleTranslateClient

        session = FakeSession(FakeResponse([[["Olá", "Hello"], [" mundo", " world"]], None, "en"]))
        client = GoogleTranslateClient(target_lang="pt", session=session)

        assert client("Hello world") == "Olá mundo"
        url, params, timeout = session.calls[0]
        assert url == GoogleTranslateClient.API_URL
        assert params["tl"] == "pt"
        assert params["sl"] == "auto"
        assert params["q"] == "Hello world"
        assert timeout == 30

    def test_detect_language(self):
        """Test language detection from the response."""
        from reflow.translation import GoogleTranslateClient

        session = FakeSession(FakeResponse([[["Olá", "Hello"]], None, "en"]))
        client = GoogleTranslateClient(session=session)

        assert client.detect_language("Hello " * 200) == "en"
        assert len(session.calls[0][1]["q"]) == 500

    def test_transport_error_raises(self):
        """Test error wrapping."""
        import requests
        from reflow.translation import GoogleTranslateClient, TranslationError

        client = GoogleTranslateClient(session=FakeSession(error=requests.exceptions.ConnectionError("down")))

        with pytest.raises(TranslationError):
            client.translate("Hello world")
        assert client.detect_language("Hello world") == "unknown"

    def test_http_and_parse_errors_raise(self):
        """Test HTTP failures and malformed payloads."""
        from reflow.translation import GoogleTranslateClient, TranslationError

        failing = GoogleTranslateClient(session=FakeSession(FakeResponse([], status_ok=False)))
        malformed = GoogleTranslateClient(session=FakeSession(FakeResponse({"error": 1})))

        with pytest.raises(TranslationError):
            failing.translate("Hello world")
        with pytest.raises(TranslationError):
            malformed.translate("Hello world")

    def test_blank_text_not_sent(self):
        """Test that blank text skips the request."""
        from reflow.translation import GoogleTranslateClient

        session = FakeSession()
        assert GoogleTranslateClient(session=session).translate("   ") == "   "
        assert session.calls == []


class TestLanguages:
    """Test the supported language table."""

    def test_language_lookup(self):
        """Test names and support checks."""
        from reflow.translation import (
            DEFAULT_TARGET_LANGUAGE, get_language_name, is_language_supported
        )

        assert DEFAULT_TARGET_LANGUAGE == "pt"
        assert get_language_name("en") == "English"
        assert get_language_name("xx") == "XX"
        assert is_language_supported("ja")
        assert not is_language_supported("xx")
