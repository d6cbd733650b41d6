"""
Structure-preserving translation module.

Provides:
- Supported language table
- Google Translate client (public endpoint, via requests)
- Translator adapter that replaces text inside rendered markup while keeping
  every tag and attribute byte-identical
"""

import html
import logging
import re
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Any

import requests

from .export import RenderedChapter, escape_text, parse_markup

logger = logging.getLogger(__name__)

TranslateFn = Callable[[str], str]


# ============================================================================
# Languages
# ============================================================================

# ISO 639-1 codes
SUPPORTED_LANGUAGES = {
    "pt": "Português (BR)",
    "en": "English",
    "es": "Español",
    "fr": "Français",
    "de": "Deutsch",
    "it": "Italiano",
    "ja": "日本語",
    "zh": "中文",
    "ru": "Русский",
    "ar": "العربية",
    "hi": "हिन्दी",
    "ko": "한국어",
    "nl": "Nederlands",
    "pl": "Polski",
    "sv": "Svenska",
    "tr": "Türkçe",
    "vi": "Tiếng Việt",
    "th": "ไทย",
    "cs": "Čeština",
    "da": "Dansk",
    "fi": "Suomi",
    "el": "Ελληνικά",
    "he": "עברית",
    "id": "Bahasa Indonesia",
    "no": "Norsk",
    "ro": "Română",
    "uk": "Українська",
}

DEFAULT_TARGET_LANGUAGE = "pt"


def get_language_name(code: str) -> str:
    """Display name for a language code; unknown codes are upper-cased."""
    return SUPPORTED_LANGUAGES.get(code, code.upper())


def is_language_supported(code: str) -> bool:
    return code in SUPPORTED_LANGUAGES


# ============================================================================
# Configuration and Errors
# ============================================================================

@dataclass
class TranslationConfig:
    """Translation options."""
    # Containers whose stripped text is shorter than this are left alone
    min_text_length: int = 3
    # Minimum interval between provider calls, in seconds
    delay_seconds: float = 0.1
    # Chapters translated concurrently (1 = sequential)
    max_workers: int = 1
    target_lang: str = DEFAULT_TARGET_LANGUAGE
    source_lang: str = "auto"
    max_chunk_chars: int = 4500
    timeout_seconds: float = 30


class TranslationError(RuntimeError):
    """A translation provider call failed."""


class RateLimiter:
    """Thread-safe minimum interval between calls."""

    def __init__(self, min_interval: float):
        self.min_interval = max(0.0, min_interval)
        self.last_call = 0.0
        self.lock = threading.Lock()

    def wait(self):
        """Wait if necessary to respect the interval."""
        if self.min_interval <= 0:
            return
        with self.lock:
            now = time.monotonic()
            if self.last_call and now - self.last_call < self.min_interval:
                time.sleep(self.min_interval - (now - self.last_call))
            self.last_call = time.monotonic()


# ============================================================================
# Google Translate Client
# ============================================================================

def split_text(text: str, max_chars: int) -> List[str]:
    """
    Split text into chunks of at most `max_chars`.

    Splits at paragraph breaks first, then at sentence ends, then hard.
    Concatenating the chunks gives back the original text.
    """
    if len(text) <= max_chars:
        return [text]

    def pieces():
        for para in re.split(r"(?<=\n\n)", text):
            if len(para) <= max_chars:
                yield para
                continue
            for sentence in re.split(r"(?<=\. )", para):
                if len(sentence) <= max_chars:
                    yield sentence
                else:
                    for i in range(0, len(sentence), max_chars):
                        yield sentence[i:i + max_chars]

    chunks = []
    current = ""
    for piece in pieces():
        if current and len(current) + len(piece) > max_chars:
            chunks.append(current)
            current = ""
        current += piece
    if current:
        chunks.append(current)
    return chunks


class GoogleTranslateClient:
    """
    Client for the public Google Translate endpoint.

    Callable: `client(text)` translates with the configured language pair.
    Raises TranslationError on transport, HTTP or parse failures.
    """

    API_URL = "https://translate.googleapis.com/translate_a/single"

    def __init__(
        self,
        target_lang: str = DEFAULT_TARGET_LANGUAGE,
        source_lang: str = "auto",
        timeout: float = 30,
        max_chunk_chars: int = 4500,
        session: Optional[requests.Session] = None
    ):
        self.target_lang = target_lang
        self.source_lang = source_lang
        self.timeout = timeout
        self.max_chunk_chars = max_chunk_chars
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config: TranslationConfig) -> 'GoogleTranslateClient':
        return cls(
            target_lang=config.target_lang,
            source_lang=config.source_lang,
            timeout=config.timeout_seconds,
            max_chunk_chars=config.max_chunk_chars
        )

    def __call__(self, text: str) -> str:
        return self.translate(text)

    def translate(self, text: str) -> str:
        if not text or not text.strip():
            return text
        chunks = split_text(text, self.max_chunk_chars)
        return "".join(self._translate_chunk(chunk) for chunk in chunks)

    def detect_language(self, text: str) -> str:
        """Detect the language of a text sample; "unknown" on failure."""
        sample = (text or "")[:500]
        if not sample.strip():
            return "unknown"
        try:
            parsed = self._request(sample, "auto", self.target_lang)
        except TranslationError as e:
            logger.warning(f"Language detection failed: {e}")
            return "unknown"
        try:
            return parsed[2] or "unknown"
        except (IndexError, KeyError, TypeError):
            return "unknown"

    def _translate_chunk(self, chunk: str) -> str:
        parsed = self._request(chunk, self.source_lang, self.target_lang)
        try:
            return "".join(segment[0] for segment in parsed[0] if segment and segment[0])
        except (IndexError, KeyError, TypeError) as e:
            raise TranslationError(f"Malformed translation response: {e}") from e

    def _request(self, text: str, source: str, target: str) -> Any:
        params = {"client": "gtx", "sl": source, "tl": target, "dt": "t", "q": text}
        try:
            response = self.session.get(self.API_URL, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            raise TranslationError(f"Translation request failed: {e}") from e
        except ValueError as e:
            raise TranslationError(f"Malformed translation response: {e}") from e


# ============================================================================
# Structure-Preserving Translator
# ============================================================================

_PROTECTED_RE = re.compile(
    r"<figure\b[^>]*>.*?</figure\s*>"
    r"|<(?P<media>video|audio|picture|svg|object|iframe)\b[^>]*>.*?</(?P=media)\s*>"
    r"|<(?:img|hr|br|source|embed|track|video|audio|iframe|object|svg)\b[^>]*/\s*>"
    r"|<(?:img|hr|br|source|embed|track)\b[^>]*>",
    re.DOTALL | re.IGNORECASE
)

# Leaf text containers: no nested tags inside
_CONTAINER_RE = re.compile(
    r"<(?P<tag>h[1-6]|p|li|blockquote|figcaption|div)\b(?P<attrs>[^>]*)>"
    r"(?P<inner>[^<]*)</(?P=tag)\s*>",
    re.IGNORECASE
)


@dataclass
class TranslationStats:
    """Span counters; safe to update from several threads."""
    submitted: int = 0
    translated: int = 0
    failed: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, ok: bool):
        with self.lock:
            self.submitted += 1
            if ok:
                self.translated += 1
            else:
                self.failed += 1

    def to_dict(self) -> Dict[str, int]:
        return {"submitted": self.submitted, "translated": self.translated, "failed": self.failed}


@dataclass
class _Span:
    tag: str
    attrs: str
    inner: str
    text: str
    translated: Optional[str] = None


class StructurePreservingTranslator:
    """
    Replaces translatable text inside rendered markup.

    Protected constructs (figures, images, rules, media) are swapped for
    placeholders first; remaining leaf text containers are swapped next and
    their text sent, one span at a time and in document order, to the
    translation function. A failing span keeps its original text.
    """

    def __init__(
        self,
        translate_fn: TranslateFn,
        config: Optional[TranslationConfig] = None
    ):
        self.translate_fn = translate_fn
        self.config = config or TranslationConfig()
        self.stats = TranslationStats()
        self.rate_limiter = RateLimiter(self.config.delay_seconds)

    def translate_markup(self, markup: str) -> str:
        """Translate one chapter's markup; tags and attributes are unchanged."""
        return self._translate(markup)[0]

    def translate_chapter(self, chapter: RenderedChapter) -> RenderedChapter:
        """Translate a rendered chapter, including its title when it appears as a span."""
        markup, mapping = self._translate(chapter.to_html())
        translated = RenderedChapter(
            title=mapping.get(chapter.title, chapter.title),
            nodes=tuple(parse_markup(markup))
        )
        return translated

    def translate_chapters(self, chapters: Sequence[RenderedChapter]) -> List[RenderedChapter]:
        """Translate distinct chapters, in parallel when max_workers > 1."""
        chapters = list(chapters)
        workers = max(1, self.config.max_workers)
        if workers == 1 or len(chapters) < 2:
            return [self.translate_chapter(c) for c in chapters]

        logger.info(f"Translating {len(chapters)} chapters with {workers} workers")
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(self.translate_chapter, chapters))

    def _translate(self, markup: str) -> Tuple[str, Dict[str, str]]:
        nonce = uuid.uuid4().hex[:12]
        protected: List[str] = []
        spans: List[_Span] = []

        def protect(match):
            protected.append(match.group(0))
            return f"\x00RP{nonce}_{len(protected) - 1}\x00"

        def capture(match):
            inner = match.group("inner")
            text = html.unescape(inner)
            if f"\x00RP{nonce}_" in inner or len(text.strip()) < self.config.min_text_length:
                return match.group(0)
            spans.append(_Span(match.group("tag"), match.group("attrs"), inner, text.strip()))
            return f"\x00RT{nonce}_{len(spans) - 1}\x00"

        work = _PROTECTED_RE.sub(protect, markup)
        work = _CONTAINER_RE.sub(capture, work)

        for span in spans:
            span.translated = self._translate_span(span.text)

        def restore_text(match):
            span = spans[int(match.group(1))]
            if span.translated is None or span.translated == span.text:
                body = span.inner
            else:
                body = escape_text(span.translated)
            return f"<{span.tag}{span.attrs}>{body}</{span.tag}>"

        work = re.sub(f"\x00RT{nonce}_(\\d+)\x00", restore_text, work)
        work = re.sub(f"\x00RP{nonce}_(\\d+)\x00", lambda m: protected[int(m.group(1))], work)

        mapping = {s.text: s.translated for s in spans if s.translated is not None}
        return work, mapping

    def _translate_span(self, text: str) -> Optional[str]:
        self.rate_limiter.wait()
        try:
            result = self.translate_fn(text)
        except Exception as e:
            logger.warning(f"Translation failed, keeping original text ({text[:40]!r}): {e}")
            self.stats.record(False)
            return None

        if not isinstance(result, str) or not result.strip():
            logger.warning(f"Empty translation, keeping original text ({text[:40]!r})")
            self.stats.record(False)
            return None

        self.stats.record(True)
        return result
