from datetime import UTC, datetime
from urllib.parse import urlparse


def is_valid_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def _with_scheme(value: str) -> str:
    value = value.strip()
    return value if "://" in value else f"https://{value}"


def normalize_domain(value: str) -> str:
    """Lowercased hostname without a leading ``www.``."""
    host = (urlparse(_with_scheme(value)).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def extract_path(value: str) -> str:
    return urlparse(_with_scheme(value)).path or "/"


def utcnow() -> datetime:
    return datetime.now(UTC)
