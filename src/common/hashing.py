"""Hashing utilities."""

import hashlib
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

TRACKING_PARAMS = {"fbclid", "gclid", "mc_cid", "mc_eid"}
DEFAULT_PORTS = {"http": 80, "https": 443}


def _is_tracking_param(key: str) -> bool:
    return key.lower().startswith("utm_") or key.lower() in TRACKING_PARAMS


def normalize_url(url: str) -> str:
    """Normalize a URL so that equivalent links map to one string.

    Scheme and host are lowercased, default ports dropped, a trailing slash
    removed from non-root paths, tracking parameters dropped, the remaining
    query parameters sorted, and the fragment discarded. A malformed port is
    kept verbatim.

    Raises:
        ValueError: If the URL cannot be split at all (e.g. an unclosed IPv6
            bracket).
    """
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()

    host = (parts.hostname or "").lower()
    try:
        port = parts.port
    except ValueError:
        # Out-of-range or non-numeric port: keep the authority as written
        port = None
        host = parts.netloc.rsplit("@", 1)[-1].lower()
    if port and port != DEFAULT_PORTS.get(scheme):
        host = f"{host}:{port}"
    if parts.username:
        userinfo = parts.username
        if parts.password:
            userinfo = f"{userinfo}:{parts.password}"
        host = f"{userinfo}@{host}"

    path = parts.path or "/"
    if path != "/":
        path = path.rstrip("/") or "/"

    params = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking_param(key)
    ]
    query = urlencode(sorted(params))

    return urlunsplit((scheme, host, path, query, ""))


def generate_fingerprint(url: str) -> str:
    """Generate a stable dedup key from an item URL."""
    return hashlib.sha256(normalize_url(url).encode("utf-8")).hexdigest()[:16]
