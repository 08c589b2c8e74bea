"""
Custom host validation.

Targets may point a provider at a self-hosted or proxied origin through
`custom_host`. Before such a value becomes the base URL of an upstream call
it is checked here:

- Protocol restriction (http/https only)
- Hostname presence
- Path traversal segments (raw or percent-encoded)
- Cloud metadata endpoints

Loopback and private hosts stay allowed: self-hosted providers such as
Ollama and Triton normally live there.
"""

from typing import Optional, Set
from urllib.parse import unquote, urlparse, urlunparse

from idk_gateway.gateway.errors import InvalidHostConfiguration


class HostGuard:
    """
    Validates and normalizes target base URLs.

    A rejected host always raises; callers never fall back to the
    provider's default origin after a rejection.
    """

    ALLOWED_SCHEMES = ("http", "https")

    # Cloud metadata endpoints
    BLOCKED_HOSTS = {
        "metadata.google.internal",
        "metadata.goog",
        "169.254.169.254",
        "fd00:ec2::254",
    }

    def __init__(self, additional_blocked_hosts: Optional[Set[str]] = None):
        self.blocked_hosts = self.BLOCKED_HOSTS.copy()
        if additional_blocked_hosts:
            self.blocked_hosts.update(h.lower() for h in additional_blocked_hosts)

    def validate_url(self, url: str, provider: Optional[str] = None) -> str:
        """
        Validate a custom host and return its normalized form.

        Query string, fragment and trailing slashes are dropped.

        Args:
            url: Candidate base URL
            provider: Provider the host is configured for

        Returns:
            Normalized base URL

        Raises:
            InvalidHostConfiguration: If the URL fails validation
        """
        candidate = (url or "").strip()
        if not candidate:
            raise InvalidHostConfiguration("Custom host is empty", provider=provider, url=url)

        parsed = urlparse(candidate)

        # 1. Validate scheme
        if parsed.scheme.lower() not in self.ALLOWED_SCHEMES:
            raise InvalidHostConfiguration(
                f"Invalid custom host scheme: {parsed.scheme or 'none'}. Only http/https allowed.",
                provider=provider,
                url=url,
            )

        # 2. Validate hostname
        try:
            hostname = parsed.hostname
            parsed.port  # raises on a malformed port
        except ValueError as e:
            raise InvalidHostConfiguration(f"Malformed custom host: {e}", provider=provider, url=url)
        if not hostname:
            raise InvalidHostConfiguration("Custom host is missing a hostname", provider=provider, url=url)

        if hostname.lower() in self.blocked_hosts:
            raise InvalidHostConfiguration(f"Blocked custom host: {hostname}", provider=provider, url=url)

        # 3. Reject traversal segments
        decoded_path = unquote(unquote(parsed.path))
        if any(segment == ".." for segment in decoded_path.replace("\\", "/").split("/")):
            raise InvalidHostConfiguration(
                "Custom host path must not contain '..' segments",
                provider=provider,
                url=url,
            )

        path = parsed.path.rstrip("/")
        return urlunparse((parsed.scheme.lower(), parsed.netloc, path, "", "", ""))


# Module-level guard
_host_guard: Optional[HostGuard] = None


def get_host_guard() -> HostGuard:
    """Get the global host guard instance."""
    global _host_guard
    if _host_guard is None:
        _host_guard = HostGuard()
    return _host_guard


def validate_custom_host(url: str, provider: Optional[str] = None) -> str:
    """Validate a custom host with the global guard."""
    return get_host_guard().validate_url(url, provider=provider)
