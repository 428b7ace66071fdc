"""Tests for sitemap generation."""

from xml.etree import ElementTree as ET

import pytest

from prodcrawl.output_writer import annotate_with_provenance
from prodcrawl.sitemap_generator import SitemapGenerator, build_sitemap, extract_provenance

NS = {"sm": "http://www.sitemaps.org/schemas/sitemap/0.9"}


@pytest.fixture
def output_root(tmp_path):
    root = tmp_path / "output"
    site = root / "example.com"
    site.mkdir(parents=True)
    (site / "0000000.txt").write_text(
        annotate_with_provenance("<html><head></head></html>", "https://example.com/a"), encoding="utf-8"
    )
    (site / "0000002.txt").write_text(
        annotate_with_provenance("<html><head></head></html>", "https://example.com/b?id=1&v=2"), encoding="utf-8"
    )
    (site / "0000003.txt").write_text("<html>no marker</html>", encoding="utf-8")
    return root


class TestExtractProvenance:
    """Test cases for extract_provenance."""

    def test_round_trip_with_escaping(self):
        url = "https://example.com/b?id=1&v=\"2\""
        assert extract_provenance(annotate_with_provenance("<p>x</p>", url)) == url

    def test_missing_marker(self):
        assert extract_provenance("<html><head></head></html>") is None


class TestBuildSitemap:
    """Test cases for build_sitemap."""

    def test_urlset_structure(self):
        xml = build_sitemap(["https://example.com/a"], lastmod="2024-01-01T00:00:00+00:00")
        root = ET.fromstring(xml)

        assert root.tag == "{http://www.sitemaps.org/schemas/sitemap/0.9}urlset"
        entry = root.find("sm:url", NS)
        assert entry.find("sm:loc", NS).text == "https://example.com/a"
        assert entry.find("sm:lastmod", NS).text == "2024-01-01T00:00:00+00:00"
        assert entry.find("sm:changefreq", NS).text == "weekly"
        assert entry.find("sm:priority", NS).text == "0.8"

    def test_xml_declaration(self):
        assert build_sitemap([]).startswith(b"<?xml")


class TestSitemapGenerator:
    """Test cases for SitemapGenerator."""

    def test_generate_site_sitemap(self, output_root):
        path = SitemapGenerator(str(output_root)).generate_site_sitemap("example.com")

        assert path == output_root / "example.com" / "sitemap.xml"
        locs = [loc.text for loc in ET.parse(path).getroot().iterfind("sm:url/sm:loc", NS)]
        assert locs == ["https://example.com/a", "https://example.com/b?id=1&v=2"]

    def test_missing_site(self, output_root):
        assert SitemapGenerator(str(output_root)).generate_site_sitemap("nope.example") is None

    def test_site_without_markers_gets_no_sitemap(self, output_root):
        site = output_root / "empty.example"
        site.mkdir()
        (site / "0000000.txt").write_text("<html>no marker</html>", encoding="utf-8")

        assert SitemapGenerator(str(output_root)).generate_site_sitemap("empty.example") is None
        assert not (site / "sitemap.xml").exists()

    def test_generate_all(self, output_root):
        other = output_root / "other.example"
        other.mkdir()
        (other / "0000000.txt").write_text(
            annotate_with_provenance("<head></head>", "https://other.example/p"), encoding="utf-8"
        )
        (output_root / "empty.example").mkdir()
        (output_root / "stray.txt").write_text("not a site")

        written = SitemapGenerator(str(output_root)).generate_all_sitemaps()

        assert sorted(written) == ["example.com", "other.example"]
        assert (other / "sitemap.xml").exists()
        assert not (output_root / "empty.example" / "sitemap.xml").exists()

    def test_generate_all_without_output(self, tmp_path):
        assert SitemapGenerator(str(tmp_path / "none")).generate_all_sitemaps() == {}
