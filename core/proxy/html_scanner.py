# core/proxy/html_scanner.py
"""
Token stream over raw HTML markup.

Tags are produced lazily by html.parser's tolerant tokenizer, which already
skips comments and the raw text of <script>/<style> and copes with '>' inside
quoted attribute values. The text of <title> and <textarea> is plain text
to browsers but not to every html.parser release, so tags inside those
elements are dropped here. Every token carries absolute offsets into the source
so callers can splice edits into the untouched original text.
"""

import logging
import re
from collections import deque
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192

# Elements whose content is text up to the matching end tag
ESCAPABLE_RAW_TEXT = ("title", "textarea")

_TAG_NAME = re.compile(r'<[a-zA-Z][^\t\n\r\f />\x00]*')
_ATTRIBUTE = re.compile(
    r'''(?P<name>[^\s/>"'=]+)
        (?:\s*=\s*(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)'|(?P<bare>[^\s>]+)))?''',
    re.VERBOSE,
)


@dataclass(frozen=True)
class AttributeToken:
    """
    One attribute of a start tag.

    value is the raw text between the quotes (None for a valueless attribute);
    start/end delimit exactly that text in the source.
    """
    name: str
    value: Optional[str]
    quote: str
    start: int
    end: int


@dataclass(frozen=True)
class TagToken:
    kind: str  # "start" | "end"
    name: str
    start: int
    end: int
    attributes: Tuple[AttributeToken, ...] = ()

    def get(self, name: str) -> Optional[AttributeToken]:
        """First attribute with the given (lowercase) name"""
        for attribute in self.attributes:
            if attribute.name == name:
                return attribute
        return None


def _scan_attributes(raw_tag: str, offset: int) -> List[AttributeToken]:
    name_match = _TAG_NAME.match(raw_tag)
    if not name_match:
        return []

    attributes = []
    for match in _ATTRIBUTE.finditer(raw_tag, name_match.end()):
        for group, quote in (("dq", '"'), ("sq", "'"), ("bare", "")):
            if match.group(group) is not None:
                attributes.append(AttributeToken(
                    name=match.group("name").lower(),
                    value=match.group(group),
                    quote=quote,
                    start=offset + match.start(group),
                    end=offset + match.end(group),
                ))
                break
        else:
            position = offset + match.end("name")
            attributes.append(AttributeToken(
                name=match.group("name").lower(),
                value=None,
                quote="",
                start=position,
                end=position,
            ))
    return attributes


def line_offsets(text: str) -> List[int]:
    """Start offset of every line. html.parser counts lines by '\\n' only."""
    return [0] + [m.end() for m in re.finditer('\n', text)]


class _TagCollector(HTMLParser):
    """Buffers tag tokens while markup is fed in chunks"""

    def __init__(self, source: str):
        super().__init__(convert_charrefs=False)
        self.pending = deque()
        self._line_starts = line_offsets(source)
        self._raw_text_tag: Optional[str] = None

    def _offset(self) -> int:
        lineno, column = self.getpos()
        return self._line_starts[lineno - 1] + column

    def handle_starttag(self, tag, attrs):
        self._start_tag(tag)
        if tag in ESCAPABLE_RAW_TEXT and self._raw_text_tag is None:
            self._raw_text_tag = tag

    def handle_startendtag(self, tag, attrs):
        self._start_tag(tag)

    def _start_tag(self, tag):
        if self._raw_text_tag is not None:
            return

        raw_tag = self.get_starttag_text()
        start = self._offset()
        self.pending.append(TagToken(
            kind="start",
            name=tag,
            start=start,
            end=start + len(raw_tag),
            attributes=tuple(_scan_attributes(raw_tag, start)),
        ))

    def handle_endtag(self, tag):
        if self._raw_text_tag is not None:
            if tag != self._raw_text_tag:
                return
            self._raw_text_tag = None

        start = self._offset()
        self.pending.append(TagToken(kind="end", name=tag, start=start, end=start))


def scan_tags(html: str, chunk_size: int = CHUNK_SIZE) -> Iterator[TagToken]:
    """
    Lazily yields the start and end tags of a document in source order

    The iterator is finite and single-use.

    Args:
        html: Markup to scan
        chunk_size: Amount of text handed to the tokenizer at once

    Yields:
        TagToken: Tag with absolute offsets into html
    """
    collector = _TagCollector(html)

    try:
        for position in range(0, len(html), chunk_size):
            collector.feed(html[position:position + chunk_size])
            while collector.pending:
                yield collector.pending.popleft()
        collector.close()
    except AssertionError as e:
        # html.parser rejects some malformed marked sections (<![...]>)
        logger.debug(f"HTML scan stopped early: {e}")

    while collector.pending:
        yield collector.pending.popleft()

