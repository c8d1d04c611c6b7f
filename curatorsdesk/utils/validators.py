"""
Curator's Desk Input Validators
===============================

URL normalization and text helpers shared by discovery, parsing and storage.
"""

import re
from urllib.parse import urlparse, urlunparse
from typing import Optional

from bs4 import BeautifulSoup

from .exceptions import ValidationError, ErrorCode


class URLValidator:
    """URL validation and normalization utilities."""

    ALLOWED_SCHEMES = {'http', 'https'}

    SUSPICIOUS_PATTERNS = [
        r'^javascript:',
        r'^data:',
        r'^file:',
        r'^ftp:',
    ]

    @classmethod
    def normalize_site_url(cls, url: str) -> str:
        """Prepend ``https://`` when no scheme is given and strip the trailing slash.

        Args:
            url: User-supplied site URL, e.g. ``example.com/``

        Returns:
            Normalized URL such as ``https://example.com``

        Raises:
            ValidationError: If the URL is empty or has no hostname
        """
        if not url or not isinstance(url, str) or not url.strip():
            raise ValidationError(
                "URL is required",
                error_code=ErrorCode.VALIDATION_REQUIRED_FIELD,
                field_name="url"
            )

        url = url.strip()
        if not re.match(r'^[a-zA-Z][a-zA-Z0-9+.-]*://', url):
            url = f"https://{url}"

        validated = cls.validate_url(url)
        return validated.rstrip('/')

    @classmethod
    def validate_url(cls, url: str) -> str:
        """Validate an absolute http(s) URL.

        Returns:
            The URL with a lower-cased scheme and host and no fragment

        Raises:
            ValidationError: If the URL is invalid
        """
        if not url or not isinstance(url, str):
            raise ValidationError(
                "URL is required and must be a string",
                error_code=ErrorCode.VALIDATION_REQUIRED_FIELD,
                field_name="url"
            )

        url = url.strip()
        if any(re.search(p, url.lower()) for p in cls.SUSPICIOUS_PATTERNS):
            raise ValidationError(
                "URL uses a forbidden scheme",
                error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
                field_name="url"
            )

        parsed = urlparse(url)

        if parsed.scheme.lower() not in cls.ALLOWED_SCHEMES:
            raise ValidationError(
                "URL scheme must be http or https",
                error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
                field_name="url"
            )

        if not parsed.netloc:
            raise ValidationError(
                "URL must include a hostname",
                error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
                field_name="url"
            )

        return urlunparse(parsed._replace(
            scheme=parsed.scheme.lower(),
            netloc=parsed.netloc.lower(),
            fragment=''
        ))


class ContentValidator:
    """Text cleanup applied before content is stored."""

    MAX_DESCRIPTION_LENGTH = 500
    ELLIPSIS = "..."

    @classmethod
    def truncate_text(cls, text: Optional[str], max_length: int = MAX_DESCRIPTION_LENGTH) -> Optional[str]:
        """Truncate text to ``max_length`` characters including a trailing ellipsis."""
        if text is None or len(text) <= max_length:
            return text
        return text[:max_length - len(cls.ELLIPSIS)] + cls.ELLIPSIS

    @classmethod
    def strip_html(cls, html: Optional[str]) -> str:
        """Convert an HTML fragment to whitespace-collapsed plain text."""
        if not html:
            return ""
        if '<' not in html and '&' not in html:
            return re.sub(r'\s+', ' ', html).strip()

        soup = BeautifulSoup(html, 'html.parser')
        for element in soup(['script', 'style']):
            element.decompose()

        text = soup.get_text(separator=' ')
        return re.sub(r'\s+', ' ', text).strip()
