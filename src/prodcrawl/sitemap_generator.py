"""Sitemap generation from persisted product page captures."""

import html
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional
from xml.etree import ElementTree as ET

from prodcrawl.constants import (
    CAPTURE_FILE_SUFFIX,
    DEFAULT_OUTPUT_DIR,
    PROVENANCE_META_NAME,
    SITEMAP_CHANGEFREQ,
    SITEMAP_FILENAME,
    SITEMAP_NAMESPACE,
    SITEMAP_PRIORITY,
)

logger = logging.getLogger(__name__)

_PROVENANCE_RE = re.compile(
    r'<meta\s+name="' + re.escape(PROVENANCE_META_NAME) + r'"\s+content="([^"]*)"',
    re.IGNORECASE,
)


def extract_provenance(content: str) -> Optional[str]:
    """Original URL recorded in a capture, or None if it has no marker."""
    match = _PROVENANCE_RE.search(content)
    if match is None:
        return None
    return html.unescape(match.group(1))


def build_sitemap(urls: List[str], lastmod: Optional[str] = None) -> bytes:
    """Serialize URLs as a sitemaps.org urlset document."""
    lastmod = lastmod or datetime.now(timezone.utc).isoformat(timespec="seconds")

    ET.register_namespace("", SITEMAP_NAMESPACE)
    urlset = ET.Element(f"{{{SITEMAP_NAMESPACE}}}urlset")
    for url in urls:
        entry = ET.SubElement(urlset, f"{{{SITEMAP_NAMESPACE}}}url")
        ET.SubElement(entry, f"{{{SITEMAP_NAMESPACE}}}loc").text = url
        ET.SubElement(entry, f"{{{SITEMAP_NAMESPACE}}}lastmod").text = lastmod
        ET.SubElement(entry, f"{{{SITEMAP_NAMESPACE}}}changefreq").text = SITEMAP_CHANGEFREQ
        ET.SubElement(entry, f"{{{SITEMAP_NAMESPACE}}}priority").text = SITEMAP_PRIORITY

    ET.indent(urlset)
    return ET.tostring(urlset, encoding="utf-8", xml_declaration=True)


class SitemapGenerator:
    """Writes ``sitemap.xml`` next to each site's captures.

    Example structure:
        output/
        └── example.com/
            ├── 0000000.txt
            └── sitemap.xml
    """

    def __init__(self, output_root: str = DEFAULT_OUTPUT_DIR):
        self.output_root = Path(output_root)

    def collect_urls(self, site_dir: Path) -> List[str]:
        """Provenance URLs of all captures in a site directory, in file order."""
        urls = []
        seen = set()
        for capture in sorted(site_dir.glob(f"*{CAPTURE_FILE_SUFFIX}")):
            try:
                content = capture.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.warning(f"Could not read {capture}: {e}")
                continue

            url = extract_provenance(content)
            if url is None:
                logger.debug(f"No provenance marker in {capture.name}")
                continue
            if url not in seen:
                seen.add(url)
                urls.append(url)
        return urls

    def generate_site_sitemap(self, domain: str) -> Optional[Path]:
        """Write the sitemap for one site.

        Args:
            domain: Name of the site's directory under the output root

        Returns:
            Path of the written sitemap, or None if the site has no directory
            or none of its captures carries a provenance marker
        """
        site_dir = self.output_root / domain
        if not site_dir.is_dir():
            logger.warning(f"Site directory {site_dir} does not exist")
            return None

        urls = self.collect_urls(site_dir)
        if not urls:
            logger.warning(f"No captured URLs for {domain}, sitemap not written")
            return None

        sitemap_path = site_dir / SITEMAP_FILENAME
        sitemap_path.write_bytes(build_sitemap(urls))

        logger.info(f"Wrote sitemap for {domain} with {len(urls)} URLs: {sitemap_path}")
        return sitemap_path

    def generate_all_sitemaps(self) -> Dict[str, Path]:
        """Write a sitemap for every site directory under the output root.

        A failure for one site is logged and does not stop the others.
        """
        if not self.output_root.is_dir():
            logger.warning(f"Output directory {self.output_root} does not exist")
            return {}

        written = {}
        for site_dir in sorted(p for p in self.output_root.iterdir() if p.is_dir()):
            try:
                path = self.generate_site_sitemap(site_dir.name)
            except OSError as e:
                logger.error(f"Sitemap generation failed for {site_dir.name}: {e}")
                continue
            if path is not None:
                written[site_dir.name] = path

        logger.info(f"Generated {len(written)} sitemaps")
        return written
