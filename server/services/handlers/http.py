"""HTTP node handler - outbound HTTP Request action."""

import ipaddress
from typing import Any, Dict, Mapping

import httpx

from constants import MASKED_HEADER_VALUE, SENSITIVE_HEADERS
from core.logging import get_logger

logger = get_logger(__name__)


def mask_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Copy of ``headers`` with credential-bearing values replaced."""
    return {
        name: MASKED_HEADER_VALUE if name.lower() in SENSITIVE_HEADERS else value
        for name, value in headers.items()
    }


def _response_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def validate_url(url: str) -> None:
    """Refuse targets on this host, private networks or cloud metadata.

    Only literal IP hosts are checked against address ranges; names are not
    resolved.

    Raises:
        ValueError: the URL has no host
        PermissionError: the host is local, private or link-local
    """
    host = httpx.URL(url).host.lower().strip("[]")
    if not host:
        raise ValueError(f"Invalid URL, no host: {url}")
    if host == "localhost" or host.endswith(".localhost"):
        raise PermissionError("HTTP request cannot target localhost")
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return
    if address.is_loopback or address.is_unspecified:
        raise PermissionError("HTTP request cannot target localhost")
    if address.is_link_local:
        raise PermissionError("HTTP request cannot target link-local or cloud metadata addresses")
    if address.is_private:
        raise PermissionError("HTTP request cannot target private IP ranges")


async def handle_http_request(
    node,
    context,
    inputs: Dict[str, Any],
    services,
    default_timeout: float = 30.0,
) -> Dict[str, Any]:
    """Handle HTTP request node execution.

    Uses the shared httpx.AsyncClient from the service provider. Local,
    private and metadata targets are refused before any request. Responses
    with status >= 400 raise httpx.HTTPStatusError so the failure is
    classified by status code.

    Returns:
        Response dict with status_code, masked headers, parsed body, url and method
    """
    client = services.service(httpx.AsyncClient)
    method = str(inputs.get("method") or "GET").upper()
    url = inputs.get("url")
    if not url:
        raise ValueError("URL is required")
    validate_url(url)

    headers = {k: str(v) for k, v in (inputs.get("headers") or {}).items()}
    timeout = inputs.get("timeout_seconds") or default_timeout
    body = inputs.get("body")

    kwargs: Dict[str, Any] = {
        "method": method,
        "url": url,
        "headers": headers,
        "params": inputs.get("query_params") or None,
        "timeout": timeout,
    }
    if body is not None and method in ("POST", "PUT", "PATCH", "DELETE"):
        if isinstance(body, (dict, list)):
            kwargs["json"] = body
        else:
            kwargs["content"] = str(body)

    logger.info("[HTTP Request] Executing", node_key=node.key, method=method, url=url,
                headers=mask_headers(headers))
    response = await client.request(**kwargs)

    if response.status_code >= 400:
        logger.warning("[HTTP Request] Error status", node_key=node.key,
                       status_code=response.status_code, url=url)
    response.raise_for_status()

    return {
        "status_code": response.status_code,
        "headers": mask_headers(response.headers),
        "body": _response_body(response),
        "url": str(response.url),
        "method": method,
    }
