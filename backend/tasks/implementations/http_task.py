"""HTTP Request step implementation.

Makes HTTP requests to external APIs/services. Headers and body may be
given as mappings or as JSON text (template fields render to strings).
"""

import ipaddress
import json
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import httpx
import structlog

from app.config import get_settings
from core.utils import parse_json_object
from tasks.base_task import BaseTask, TaskResult
from workflow.models import StepContext

logger = structlog.get_logger(__name__)

FORBIDDEN_PORTS = (5432, 6379)  # postgres, redis
BODY_METHODS = ("POST", "PUT", "PATCH", "DELETE")


def _is_private_ip(host: str) -> bool:
    """Check if a literal IP address is private, loopback or reserved."""
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    return ip.is_private or ip.is_loopback or ip.is_reserved or ip.is_link_local


def validate_url_safety(url: str, allow_private: bool = False) -> None:
    """Validate a URL for SSRF protection.

    Blocks non-HTTP(S) schemes and, unless ``allow_private`` is set,
    localhost, private/loopback IP literals and internal service ports.

    Raises:
        ValueError: If URL is unsafe
    """
    parsed = urlparse(url)
    if parsed.scheme.lower() not in ("http", "https"):
        raise ValueError(f"Unsupported scheme: {parsed.scheme or '(none)'}. Only HTTP and HTTPS allowed.")

    hostname = parsed.hostname
    if not hostname:
        raise ValueError("URL must have a valid hostname")

    if allow_private:
        return

    if hostname.lower() == "localhost" or _is_private_ip(hostname):
        raise ValueError(f"Connections to {hostname} are not allowed")

    if parsed.port in FORBIDDEN_PORTS:
        raise ValueError(f"Connections to internal port {parsed.port} are not allowed")


class HttpRequestTask(BaseTask):
    """Execute HTTP requests to external services.

    Config:
        endpoint: Target URL (required; ``url`` accepted as an alias)
        httpMethod: GET, POST, PUT, PATCH, DELETE (default: GET)
        httpHeaders: Mapping or JSON object text
        httpBody: Mapping, list or JSON text; sent as JSON when it parses
        timeout: Request timeout in seconds (default: HTTP_TIMEOUT)
    """

    action_type = "HTTP Request"
    display_name = "HTTP Request"
    description = "Make HTTP requests to APIs and web services"

    # Swapped for httpx.MockTransport in tests
    transport: Optional[httpx.AsyncBaseTransport] = None

    async def execute(self, config: Dict[str, Any], context: Optional[StepContext] = None) -> TaskResult:
        settings = get_settings()
        url = config.get("endpoint") or config.get("url")
        if not url:
            return TaskResult(success=False, error="Missing required config: endpoint")

        try:
            validate_url_safety(url, allow_private=settings.HTTP_ALLOW_PRIVATE_NETWORKS)
            headers = parse_json_object(config.get("httpHeaders"), "httpHeaders")
        except ValueError as e:
            return TaskResult(success=False, error=str(e))

        method = str(config.get("httpMethod") or config.get("method") or "GET").upper()
        timeout = config.get("timeout") or settings.HTTP_TIMEOUT

        kwargs: Dict[str, Any] = {"method": method, "url": url, "headers": headers}
        body = config.get("httpBody")
        if body not in (None, "") and method in BODY_METHODS:
            if isinstance(body, (dict, list)):
                kwargs["json"] = body
            else:
                try:
                    kwargs["json"] = json.loads(body)
                except (TypeError, ValueError):
                    kwargs["content"] = str(body)

        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=timeout) as client:
                response = await client.request(**kwargs)
        except httpx.TimeoutException:
            return TaskResult(success=False, error=f"Request timed out after {timeout}s")
        except httpx.HTTPError as e:
            return TaskResult(success=False, error=f"HTTP request failed: {e}")

        try:
            response_data = response.json()
        except ValueError:
            response_data = response.text

        if response.is_error:
            return TaskResult(
                success=False,
                output=response_data,
                error=f"HTTP {response.status_code}: {response.reason_phrase}",
            )

        logger.debug("http_response", status_code=response.status_code, url=str(response.url))
        return TaskResult(
            success=True,
            output=response_data,
            metadata={"status_code": response.status_code, "headers": dict(response.headers)},
        )


async def http_request_step(step_input: Dict[str, Any]) -> Dict[str, Any]:
    return await HttpRequestTask().run(step_input)
