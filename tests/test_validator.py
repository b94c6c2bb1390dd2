import pytest

from blockingmachine.validator import is_valid_domain, is_valid_url, normalize_domain


@pytest.mark.parametrize("domain", [
    "a.co",
    "example.com",
    "ads.example.co.uk",
    "xn--80ak6aa92e.com",
    "my-site.example.org",
    "EXAMPLE.COM",
    "  padded.example.com  ",
])
def test_valid_domains(domain):
    assert is_valid_domain(domain)


@pytest.mark.parametrize("domain", [
    "",
    "a",
    "a.c",
    "-a.com",
    "a-.com",
    "a..com",
    ".example.com",
    "example.123",
    "*.example.com",
    "example.com/path",
    "under_score.com",
    "1.2.3.4",
])
def test_invalid_domains(domain):
    assert not is_valid_domain(domain)


def test_domain_length_bounds():
    assert is_valid_domain("a" * 250 + ".com")
    assert not is_valid_domain("a" * 252 + ".com")


def test_non_string_is_rejected():
    assert not is_valid_domain(None)
    assert not is_valid_domain(42)


def test_normalize_domain():
    assert normalize_domain("  Ads.Example.COM. ") == "ads.example.com"


@pytest.mark.parametrize("url, expected", [
    ("https://raw.githubusercontent.com/org/repo/main/list.txt", True),
    ("http://example.org/hosts", True),
    ("http://localhost:8080/list.txt", True),
    ("http://127.0.0.1:8080/list.txt", True),
    ("data:text/plain,||ads.example.com^", True),
    ("ftp://example.org/list.txt", False),
    ("https://intranet/list.txt", False),
    ("not a url", False),
    ("", False),
])
def test_is_valid_url(url, expected):
    assert is_valid_url(url) is expected
