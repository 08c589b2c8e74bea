import pytest

from idk_gateway.gateway.errors import InvalidHostConfiguration
from idk_gateway.gateway.middleware.host_guard import HostGuard, validate_custom_host


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://example.com/", "https://example.com"),
        ("http://localhost:11434", "http://localhost:11434"),
        ("HTTPS://proxy.internal/v1///", "https://proxy.internal/v1"),
        ("http://10.0.0.5:8000/api?x=1#frag", "http://10.0.0.5:8000/api"),
    ],
)
def test_valid_hosts_are_normalized(url: str, expected: str) -> None:
    assert validate_custom_host(url) == expected


@pytest.mark.parametrize(
    "url",
    [
        "javascript:alert(1)",
        "ftp://example.com",
        "file:///etc/passwd",
        "",
        "   ",
        "https://",
        "http://169.254.169.254/latest/meta-data",
        "http://metadata.google.internal",
        "https://example.com/../admin",
        "https://example.com/%2e%2e/admin",
        "https://example.com/%252e%252e/admin",
        "http://example.com:notaport",
    ],
)
def test_invalid_hosts_are_rejected(url: str) -> None:
    with pytest.raises(InvalidHostConfiguration) as exc_info:
        validate_custom_host(url, provider="openai")

    assert exc_info.value.status_code == 400
    assert exc_info.value.provider == "openai"
    assert exc_info.value.url == url


def test_additional_blocked_hosts() -> None:
    guard = HostGuard(additional_blocked_hosts={"Internal.Example"})

    with pytest.raises(InvalidHostConfiguration):
        guard.validate_url("https://internal.example/v1")
    assert guard.validate_url("https://public.example") == "https://public.example"
