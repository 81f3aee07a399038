from __future__ import annotations

import httpx

from .exceptions import InvalidEndpoint
from .params import NormalizedParams

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def validate_endpoint(endpoint: str) -> httpx.URL:
    try:
        url = httpx.URL(endpoint)
    except (httpx.InvalidURL, TypeError) as exc:
        raise InvalidEndpoint(f"invalid endpoint URL: {endpoint!r}") from exc
    if url.scheme not in {"http", "https"} or not url.host:
        raise InvalidEndpoint(f"invalid endpoint URL (expect full URL): {endpoint!r}")
    if not url.path.endswith("api.php"):
        raise InvalidEndpoint(f"invalid endpoint path (expect .../api.php): {url.path!r}")
    return url


def build_request(
    http: httpx.Client,
    method: str,
    endpoint: httpx.URL,
    params: NormalizedParams,
    *,
    user_agent: str,
    timeout: float,
) -> httpx.Request:
    headers = {"User-Agent": user_agent}
    base_items = endpoint.params.multi_items()

    if method == "GET":
        # Outgoing fields replace every endpoint value of the same key.
        merged = [(key, value) for key, value in base_items if key not in params.fields]
        merged.extend(params.fields.items())
        return http.build_request("GET", endpoint.copy_with(params=merged), headers=headers, timeout=timeout)

    # Writes: the body value is authoritative over the endpoint query.
    url = endpoint.copy_with(params=[(key, value) for key, value in base_items if key not in params.fields])
    if not params.attachments:
        headers["Content-Type"] = FORM_CONTENT_TYPE
        return http.build_request("POST", url, data=dict(params.fields), headers=headers, timeout=timeout)

    files: list[tuple[str, tuple[str, bytes] | tuple[str, bytes, str]]] = []
    for field_name, attachment in params.attachments:
        filename = attachment.filename or field_name
        if attachment.content_type:
            files.append((field_name, (filename, attachment.read_bytes(), attachment.content_type)))
        else:
            files.append((field_name, (filename, attachment.read_bytes())))
    return http.build_request("POST", url, data=dict(params.fields), files=files, headers=headers, timeout=timeout)
