"""URL normalization and filtering for frontier deduplication."""

from urllib.parse import urljoin, urlsplit

from prodcrawl.constants import DEFAULT_PORTS, NON_DOCUMENT_EXTENSIONS


def normalize_url(url: str) -> str:
    """Build the dedup key for a URL.

    Lowercases scheme and host, drops default ports, query string and
    fragment, and keeps the path as-is. Distinct query strings therefore
    collapse to one key.

    Args:
        url: Absolute URL

    Returns:
        Normalized key, or the raw string when the URL cannot be parsed
    """
    try:
        parsed = urlsplit(url.strip())
        scheme = parsed.scheme.lower()
        host = parsed.hostname
        port = parsed.port
    except (ValueError, AttributeError):
        return url

    if not scheme or not host:
        return url

    netloc = host
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{host}:{port}"

    return f"{scheme}://{netloc}{parsed.path or '/'}"


def is_same_domain(base_url: str, candidate_url: str) -> bool:
    """Check whether two URLs share the exact same hostname.

    Subdomains are not folded: ``shop.example.com`` and ``example.com``
    are different domains.
    """
    try:
        base_host = urlsplit(base_url).hostname
        candidate_host = urlsplit(candidate_url).hostname
    except ValueError:
        return False

    if not base_host or not candidate_host:
        return False
    return base_host == candidate_host


def is_crawlable_page(url: str) -> bool:
    """Check that a URL does not point at an image, archive or other asset.

    Args:
        url: Absolute or relative URL

    Returns:
        False if the path ends in a known non-document extension
    """
    try:
        path = urlsplit(url).path
    except ValueError:
        path = url

    path_lower = path.lower()
    return not any(path_lower.endswith(ext) for ext in NON_DOCUMENT_EXTENSIONS)


def to_absolute_url(base_url: str, maybe_relative: str) -> str:
    """Resolve a link against the page it was found on.

    Unparseable input is returned unchanged.
    """
    try:
        return urljoin(base_url, maybe_relative.strip())
    except ValueError:
        return maybe_relative
