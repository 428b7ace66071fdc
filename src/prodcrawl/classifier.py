"""Product page classification by selector rules."""

import logging
from typing import Iterable, List, Optional

from prodcrawl.document import Document

logger = logging.getLogger(__name__)


def is_product_page(document: Document, selector_rules: Iterable[str]) -> bool:
    """Check whether any selector rule matches the document.

    Rules are tried in order and evaluation stops at the first match, so
    order only affects cost. An empty rule set never matches.

    Raises:
        DocumentError: If the document or a selector cannot be evaluated
    """
    for selector in selector_rules:
        if document.matches(selector):
            logger.debug(f"Selector {selector!r} matched {document.url}")
            return True
    return False


class PageClassifier:
    """Classifier bound to one task's selector rules."""

    def __init__(self, selector_rules: Optional[List[str]] = None):
        self.selector_rules = list(selector_rules or [])
        if not self.selector_rules:
            logger.warning("No selector rules configured; no page will be classified as a product")

    def classify(self, document: Document) -> bool:
        return is_product_page(document, self.selector_rules)
