"""Email body sanitizer — strips markup and noise before prompt construction."""

import html
import logging
import re
from html.parser import HTMLParser

logger = logging.getLogger(__name__)

# Upper bound on characters of body text placed in a prompt, applied after
# markup removal so it counts visible text rather than HTML.
BODY_CHAR_LIMIT = 15_000
TRUNCATION_MARKER = "... [truncated]"

# Elements dropped together with everything inside them.
_SKIPPED_TAGS = frozenset({"script", "style", "nav", "footer", "iframe", "noscript"})

# Elements that visually separate text; a space keeps neighbouring words apart.
_BLOCK_TAGS = frozenset({
    "br", "p", "div", "li", "tr", "td", "th", "table", "ul", "ol",
    "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "section", "article",
    "header", "hr",
})

_WHITESPACE = re.compile(r"\s+")

# Used only when HTMLParser gives up on a body (e.g. unknown marked sections).
_SKIPPED_ELEMENT = re.compile(
    r"<(script|style|nav|footer|iframe|noscript)\b.*?</\1\s*>", re.IGNORECASE | re.DOTALL
)
_ANY_TAG = re.compile(r"<[^>]*>")


class _TextExtractor(HTMLParser):
    """HTMLParser subclass that keeps visible text and drops noise elements."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._parts: list[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in _SKIPPED_TAGS:
            self._skip_depth += 1
        elif tag in _BLOCK_TAGS:
            self._parts.append(" ")

    def handle_endtag(self, tag: str) -> None:
        if tag in _SKIPPED_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
        elif tag in _BLOCK_TAGS:
            self._parts.append(" ")

    def handle_data(self, data: str) -> None:
        if not self._skip_depth:
            self._parts.append(data)

    def get_text(self) -> str:
        return "".join(self._parts)


def extract_text(raw: str) -> str:
    """Return the visible text of an HTML string (plain text passes through)."""
    if "<" not in raw:
        return raw
    parser = _TextExtractor()
    try:
        parser.feed(raw)
        parser.close()
    except Exception as exc:  # noqa: BLE001
        logger.debug("HTMLParser rejected body (%s); falling back to regex strip", exc)
        return _strip_tags(raw)
    return parser.get_text()


def _strip_tags(raw: str) -> str:
    text = _SKIPPED_ELEMENT.sub(" ", raw)
    return html.unescape(_ANY_TAG.sub(" ", text))


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def sanitize(raw: str | None, limit: int = BODY_CHAR_LIMIT) -> str:
    """Turn a raw (possibly HTML) email body into bounded plain text.

    Total over any input: ``None`` and the empty string both yield ``""``.
    Output longer than ``limit`` is cut to exactly ``limit`` characters and
    TRUNCATION_MARKER is appended.
    """
    if not raw:
        return ""
    text = collapse_whitespace(extract_text(raw))
    if len(text) > limit:
        return text[:limit] + TRUNCATION_MARKER
    return text
