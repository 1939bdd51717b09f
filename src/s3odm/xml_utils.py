"""S3 XML helpers for s3odm.

Listing responses are scanned incrementally: the body is fed to a pull
tokenizer in chunks and only the text of the selected elements is kept.
Elements are detached from the tree as soon as their end tag is seen, so a
page of a thousand keys never becomes a full document tree.
"""

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from xml.etree import ElementTree
from xml.sax.saxutils import escape as _sax_escape

from s3odm.errors import MalformedResponseError

logger = logging.getLogger(__name__)

# Tokenizer feed size: 64 KB
_CHUNK_SIZE = 64 * 1024

# (parent, element) pairs reported by the listing scanner
KEY = ("Contents", "Key")
COMMON_PREFIX = ("CommonPrefixes", "Prefix")
IS_TRUNCATED = ("ListBucketResult", "IsTruncated")
NEXT_CONTINUATION_TOKEN = ("ListBucketResult", "NextContinuationToken")

Target = tuple[str, str]


def _escape_xml(value: str) -> str:
    """Escape special XML characters in a string value."""
    return _sax_escape(str(value))


def _local_name(tag: str) -> str:
    """Strip the ``{namespace}`` part of an ElementTree tag."""
    return tag.rpartition("}")[2]


class XMLTokenizer:
    """Incremental XML tokenizer reporting the text of selected elements.

    Elements are matched by their (parent, name) pair with namespaces
    stripped. An instance belongs to a single response body and must be
    released with ``free()`` once the body is consumed or abandoned; use
    ``xml_tokenizer()`` to get that for free.
    """

    def __init__(self, targets: Iterable[Target]) -> None:
        self._targets = frozenset(targets)
        self._parser: ElementTree.XMLPullParser | None = ElementTree.XMLPullParser(
            events=("start", "end")
        )
        self._stack: list[tuple[str, ElementTree.Element]] = []

    def write(self, chunk: bytes) -> list[tuple[Target, str]]:
        """Feed a chunk of the document.

        Returns:
            The (target, text) matches completed by this chunk.

        Raises:
            xml.etree.ElementTree.ParseError: If the document is malformed.
        """
        parser = self._require_parser()
        parser.feed(chunk)
        return self._drain(parser)

    def end(self) -> list[tuple[Target, str]]:
        """Flush the tokenizer at the end of the document.

        Raises:
            xml.etree.ElementTree.ParseError: If the document is truncated.
        """
        parser = self._require_parser()
        parser.close()
        return self._drain(parser)

    def free(self) -> None:
        """Release the parser and any partially built elements."""
        self._parser = None
        self._stack.clear()

    @property
    def released(self) -> bool:
        return self._parser is None

    def _require_parser(self) -> ElementTree.XMLPullParser:
        if self._parser is None:
            raise RuntimeError("XMLTokenizer used after free()")
        return self._parser

    def _drain(self, parser: ElementTree.XMLPullParser) -> list[tuple[Target, str]]:
        matches: list[tuple[Target, str]] = []
        for event, elem in parser.read_events():
            name = _local_name(elem.tag)
            if event == "start":
                self._stack.append((name, elem))
                continue

            self._stack.pop()
            parent_name = ""
            if self._stack:
                parent_name, parent = self._stack[-1]
                parent.remove(elem)

            if (parent_name, name) in self._targets:
                matches.append(((parent_name, name), elem.text or ""))
            elem.clear()
        return matches


@contextmanager
def xml_tokenizer(targets: Iterable[Target]) -> Iterator[XMLTokenizer]:
    """Scope a tokenizer so it is released on every exit path."""
    tokenizer = XMLTokenizer(targets)
    try:
        yield tokenizer
    finally:
        tokenizer.free()


def iter_element_text(
    body: bytes,
    targets: Iterable[Target],
    chunk_size: int = _CHUNK_SIZE,
) -> Iterator[tuple[Target, str]]:
    """Lazily yield ``(target, text)`` for every target element in ``body``.

    Args:
        body: The raw XML document.
        targets: (parent, element) pairs to report.
        chunk_size: Number of bytes fed to the tokenizer at a time.

    Raises:
        MalformedResponseError: If the document is not well-formed XML.
    """
    with xml_tokenizer(targets) as tokenizer:
        try:
            for offset in range(0, len(body), chunk_size):
                yield from tokenizer.write(body[offset : offset + chunk_size])
            yield from tokenizer.end()
        except ElementTree.ParseError as exc:
            raise MalformedResponseError(f"Malformed listing response: {exc}") from exc


@dataclass
class ListPage:
    """One parsed page of a ListObjectsV2 response.

    Attributes:
        entries: Non-empty texts of the scanned element, in document order.
        is_truncated: The page's ``IsTruncated`` flag, or None if absent.
        next_continuation_token: The page's ``NextContinuationToken``, if any.
    """

    entries: list[str] = field(default_factory=list)
    is_truncated: bool | None = None
    next_continuation_token: str | None = None


def parse_list_page(
    body: bytes,
    element: Target = KEY,
    chunk_size: int = _CHUNK_SIZE,
) -> ListPage:
    """Scan a ListObjectsV2 response body.

    Args:
        body: The raw XML response.
        element: ``KEY`` for object listings, ``COMMON_PREFIX`` for
            delimiter listings.
        chunk_size: Tokenizer feed size.

    Returns:
        The page's entries and pagination fields.

    Raises:
        MalformedResponseError: If the body is not well-formed XML.
    """
    page = ListPage()
    targets = (element, IS_TRUNCATED, NEXT_CONTINUATION_TOKEN)
    for target, text in iter_element_text(body, targets, chunk_size):
        if target == element:
            if text:
                page.entries.append(text)
        elif target == IS_TRUNCATED:
            page.is_truncated = text.strip().lower() == "true"
        else:
            page.next_continuation_token = text or None
    return page


def render_delete_objects(keys: Iterable[str]) -> str:
    """Render a multi-object delete request body.

    Args:
        keys: Full object keys to delete.

    Returns:
        An XML string for the Delete element.
    """
    parts = ["<Delete>"]
    for key in keys:
        parts.append(f"<Object><Key>{_escape_xml(key)}</Key></Object>")
    parts.append("</Delete>")
    return "".join(parts)
