from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

TRACKING_KEYS = {"ref", "fbclid", "gclid", "source"}


def _is_tracking_param(key: str) -> bool:
    return key.lower().startswith("utm_") or key.lower() in TRACKING_KEYS


def normalize_apply_url(raw_url: str | None) -> str | None:
    """Strip tracking parameters and default ports so re-synced postings keep a stable apply URL."""
    if not raw_url or not raw_url.strip():
        return None
    parsed = urlparse(raw_url.strip())
    if parsed.scheme.lower() not in {"http", "https"} or not parsed.netloc:
        return raw_url.strip()

    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()

    if ":" in netloc:
        host, port = netloc.rsplit(":", maxsplit=1)
        if (scheme == "http" and port == "80") or (scheme == "https" and port == "443"):
            netloc = host

    path = parsed.path or "/"
    if path != "/" and path.endswith("/"):
        path = path[:-1]

    filtered_query_pairs = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not _is_tracking_param(key)
    ]
    query = urlencode(filtered_query_pairs, doseq=True)

    return urlunparse((scheme, netloc, path, "", query, ""))
