"""
============================================================================
FLEET WATCHDOG - VALIDATORS UTILITY
============================================================================
URL checks used before any outbound request is attempted.

Client endpoints are frequently internal hosts (container names,
localhost, bare IPs), so the `validators` check runs with simple hosts
and private addresses allowed, on top of the scheme and host checks.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

from typing import Any, Dict, Iterable, Optional
from urllib.parse import urlparse
import validators as external_validators

from exceptions.fetch import InvalidTargetURLError


ALLOWED_SCHEMES = ("http", "https")


# ============================================================================
# URL VALIDATORS
# ============================================================================

class URLValidator:
    """
    URL validation and parsing.
    """

    @staticmethod
    def validate(url: Any) -> str:
        """
        Return the stripped URL or raise ``InvalidTargetURLError``.

        Args:
            url: Candidate URL

        Raises:
            InvalidTargetURLError: empty, unparseable, wrong scheme, no host
                or rejected by `validators.url`
        """
        if not isinstance(url, str) or not url.strip():
            raise InvalidTargetURLError(url, reason="empty")

        url = url.strip()
        try:
            parsed = urlparse(url)
            # Accessing .port validates it
            parsed.port
        except ValueError as e:
            raise InvalidTargetURLError(url, reason="unparseable", cause=e) from e

        if parsed.scheme.lower() not in ALLOWED_SCHEMES:
            raise InvalidTargetURLError(url, reason="no_scheme")

        if not parsed.hostname:
            raise InvalidTargetURLError(url, reason="no_host")

        result = external_validators.url(url, simple_host=True, private=None)
        if result is not True:
            raise InvalidTargetURLError(url, reason="malformed")

        return url

    @staticmethod
    def is_valid_url(url: Any) -> bool:
        """
        Check if URL is valid.

        Returns:
            True if valid, False otherwise
        """
        try:
            URLValidator.validate(url)
        except InvalidTargetURLError:
            return False
        return True

    @staticmethod
    def parse_url(url: str) -> Optional[Dict[str, Any]]:
        """
        Parse URL into components.

        Returns:
            Dictionary with URL components or None if invalid
        """
        if not URLValidator.is_valid_url(url):
            return None

        parsed = urlparse(url.strip())
        return {
            "scheme": parsed.scheme,
            "netloc": parsed.netloc,
            "hostname": parsed.hostname,
            "port": parsed.port,
            "path": parsed.path,
            "query": parsed.query,
            "full_url": url
        }

    @staticmethod
    def join(base: str, path: str) -> str:
        """Append a path to a base URL without doubling slashes."""
        return f"{base.rstrip('/')}/{path.lstrip('/')}"

    @staticmethod
    def host_matches(url: str, markers: Iterable[str]) -> bool:
        """
        True when the URL's host contains any of the markers.

        Used to pick the ``/exit`` restart path for hosts that restart
        the process themselves when it exits.
        """
        parsed = URLValidator.parse_url(url)
        if not parsed or not parsed["hostname"]:
            return False
        host = parsed["hostname"].lower()
        return any(marker.lower() in host for marker in markers if marker)
