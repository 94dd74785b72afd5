from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


def append_query_param(url: str, key: str, value: str | int) -> str:
    """Set a query parameter on URL while preserving other query params and fragments."""
    parts = urlsplit(url)
    query_params = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != key]
    query_params.append((key, str(value)))
    updated_query = urlencode(query_params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, updated_query, parts.fragment))


def build_frontend_url(base_url: str, path: str, query: dict[str, str] | None = None) -> str:
    """Join a frontend base URL and path, forwarding the given query parameters."""
    url = f"{base_url.rstrip('/')}/{path.lstrip('/')}"
    for key, value in (query or {}).items():
        url = append_query_param(url, key, value)
    return url
