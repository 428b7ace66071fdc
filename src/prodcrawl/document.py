"""Parsed documents produced by the fetch strategies."""

from abc import ABC, abstractmethod
from typing import List, Optional

from bs4 import BeautifulSoup
from soupsieve import SelectorSyntaxError


class DocumentError(Exception):
    """Raised when a document cannot be queried (malformed markup or selector)."""


class Document(ABC):
    """A fetched page that selector rules can be evaluated against."""

    def __init__(self, url: str, html: str):
        self.url = url
        self.html = html

    @abstractmethod
    def matches(self, selector: str) -> bool:
        """True if ``selector`` matches at least one node."""

    @abstractmethod
    def links(self) -> List[str]:
        """Raw ``href`` values of all anchors, in document order."""


class HtmlDocument(Document):
    """Document backed by a BeautifulSoup tree, parsed on first use.

    Both fetch strategies end up with serialized HTML (the static one from
    the response body, the rendered one from the live DOM), so they share
    this implementation.
    """

    def __init__(self, url: str, html: str, final_url: Optional[str] = None, rendered: bool = False):
        """
        Args:
            url: URL that was requested
            html: Raw or rendered HTML
            final_url: URL after redirects, if different
            rendered: Whether the HTML came from a browser DOM
        """
        super().__init__(url, html)
        self.final_url = final_url or url
        self.rendered = rendered
        self._soup: Optional[BeautifulSoup] = None

    @property
    def soup(self) -> BeautifulSoup:
        if self._soup is None:
            try:
                self._soup = BeautifulSoup(self.html, "html.parser")
            except Exception as e:
                raise DocumentError(f"Cannot parse {self.url}: {e}") from e
        return self._soup

    def matches(self, selector: str) -> bool:
        try:
            return self.soup.select_one(selector) is not None
        except SelectorSyntaxError as e:
            raise DocumentError(f"Invalid selector {selector!r}: {e}") from e

    def links(self) -> List[str]:
        return [
            anchor["href"]
            for anchor in self.soup.select("a[href]")
            if anchor["href"].strip()
        ]
