"""HTML link extractor.

Parses HTML content, extracts URLs from anchor tags, resolves relative links
against the page's effective URL and canonicalizes them. Scope decisions are
left to the matcher.
"""

import html
import logging
import re
from typing import List
from urllib.parse import urljoin, urlsplit

from ..url_tools import canonicalize

logger = logging.getLogger(__name__)

# Handles both quoted (single/double) and unquoted href values
HREF_PATTERN = re.compile(
    r"""<a\s+(?:[^>]*?\s)?href\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s>]+))""",
    re.IGNORECASE | re.DOTALL,
)
SKIPPED_PREFIXES = ("#", "javascript:", "mailto:", "tel:", "data:")


class LinkExtractor:
    """Extract and normalize links from HTML pages."""

    def __init__(self, keep_query: bool = False):
        self.keep_query = keep_query

    def extract(self, html_content: str, base_url: str) -> List[str]:
        """Extract all HTTP(S) links from HTML content.

        Args:
            html_content: HTML content as string
            base_url: Effective URL of the page, used to resolve relative links

        Returns:
            List of canonical absolute URLs (deduplicated, order-preserving)
        """
        if not html_content or not base_url:
            return []

        seen = set()
        results = []

        for match in HREF_PATTERN.finditer(html_content):
            href = match.group(1) or match.group(2) or match.group(3) or ""

            # Unescape HTML entities (e.g., &amp; -> &)
            href = html.unescape(href).strip()

            if not href or href.lower().startswith(SKIPPED_PREFIXES):
                continue

            try:
                absolute_url = urljoin(base_url, href)
            except ValueError as e:
                logger.debug(f"Skipping malformed link {href!r} on {base_url}: {e}")
                continue

            if not self._is_supported_scheme(absolute_url):
                continue

            url = canonicalize(absolute_url, keep_query=self.keep_query)

            # Track unique URLs while preserving appearance order
            if url not in seen:
                seen.add(url)
                results.append(url)

        logger.debug(f"Extracted {len(results)} links from {base_url}")
        return results

    def _is_supported_scheme(self, url: str) -> bool:
        """Check whether URL uses a supported scheme (HTTP or HTTPS)."""
        try:
            parts = urlsplit(url)
            return parts.scheme in ("http", "https") and bool(parts.netloc)
        except ValueError:
            return False
