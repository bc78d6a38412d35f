from urllib.parse import urlparse

from markstream.errors import ValidationError


def normalize_url(url: str) -> str:
    value = (url or "").strip()
    if not value:
        raise ValidationError("URL is required.")
    if value.startswith("http"):
        return value
    return f"https://{value}"


def domain_of(url: str) -> str:
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return url
    if not hostname:
        return url
    return hostname.removeprefix("www.")


def default_title(url: str, title: str | None = None) -> str:
    clean = (title or "").strip()
    if clean:
        return clean
    return domain_of(url)
