"""Tests for HTML documents and product page classification."""

from unittest.mock import Mock

import pytest

from prodcrawl.classifier import PageClassifier, is_product_page
from prodcrawl.document import DocumentError, HtmlDocument


PRODUCT_HTML = """
<html><head><title>Widget</title></head>
<body>
  <div class="product"><h1>Widget</h1><span class="price">$10</span></div>
  <a href="/a">A</a>
  <a href="https://example.com/b">B</a>
  <a href="">empty</a>
  <a>no href</a>
</body></html>
"""

LISTING_HTML = "<html><body><ul><li class='tile'>One</li></ul></body></html>"


class TestHtmlDocument:
    """Test cases for HtmlDocument."""

    def test_matches_selector(self):
        document = HtmlDocument("https://example.com/w", PRODUCT_HTML)
        assert document.matches(".product")
        assert document.matches("div.product span.price")
        assert not document.matches(".item")

    def test_invalid_selector_raises_document_error(self):
        document = HtmlDocument("https://example.com/w", PRODUCT_HTML)
        with pytest.raises(DocumentError):
            document.matches("div[[")

    def test_links_skip_empty_and_missing_href(self):
        document = HtmlDocument("https://example.com/w", PRODUCT_HTML)
        assert document.links() == ["/a", "https://example.com/b"]

    def test_final_url_defaults_to_url(self):
        document = HtmlDocument("https://example.com/w", PRODUCT_HTML)
        assert document.final_url == "https://example.com/w"

        redirected = HtmlDocument("https://example.com/w", PRODUCT_HTML, final_url="https://example.com/w/")
        assert redirected.final_url == "https://example.com/w/"

    def test_malformed_markup_still_parses(self):
        document = HtmlDocument("https://example.com/x", "<div class='product'><p>unclosed")
        assert document.matches(".product")


class TestIsProductPage:
    """Test cases for is_product_page."""

    def test_any_rule_matches(self):
        document = HtmlDocument("https://example.com/w", PRODUCT_HTML)
        assert is_product_page(document, [".item", ".product"])

    def test_no_rule_matches(self):
        document = HtmlDocument("https://example.com/l", LISTING_HTML)
        assert not is_product_page(document, [".product", ".item", ".product-item"])

    def test_empty_rules_never_match(self):
        document = HtmlDocument("https://example.com/w", PRODUCT_HTML)
        assert not is_product_page(document, [])

    def test_short_circuits_on_first_match(self):
        """Later rules are not evaluated once one matches."""
        document = Mock()
        document.matches.side_effect = lambda selector: selector == ".first"

        assert is_product_page(document, [".first", ".second", ".third"])
        document.matches.assert_called_once_with(".first")

    def test_rules_evaluated_in_order(self):
        document = Mock()
        document.matches.return_value = False

        is_product_page(document, [".a", ".b"])
        assert [call.args[0] for call in document.matches.call_args_list] == [".a", ".b"]

    def test_invalid_rule_propagates(self):
        document = HtmlDocument("https://example.com/l", LISTING_HTML)
        with pytest.raises(DocumentError):
            is_product_page(document, ["li[["])


class TestPageClassifier:
    """Test cases for PageClassifier."""

    def test_classify_uses_rules(self):
        classifier = PageClassifier([".tile"])
        assert classifier.classify(HtmlDocument("https://example.com/l", LISTING_HTML))

    def test_no_rules(self):
        classifier = PageClassifier([])
        assert classifier.selector_rules == []
        assert not classifier.classify(HtmlDocument("https://example.com/w", PRODUCT_HTML))
