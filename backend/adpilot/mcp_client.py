"""
Platform MCP Client
Talks to an ad platform gateway exposed as an MCP server over Streamable HTTP.

The gateway exposes three tools:
  find_resource    {parent_id, kind, name}       -> {"resource": {...} | null}
  create_resource  {parent_id, kind, name, attributes} -> {"resource": {...}}
  upload_asset     {account_id, name, data_base64} -> {"resource": {...}}
and reports failures as {"error": {"code": ..., "message": ...}}.

Every failure is returned as a classified PlatformResult, never raised.
"""

import asyncio
import base64
import json
import logging
from typing import Any, Optional

import httpx
from mcp import ClientSession
from mcp.client.streamable_http import streamablehttp_client

from adpilot.config import Settings, get_settings
from adpilot.models import Platform
from adpilot.platform_client import (
    PlatformResult, ResourceRef, ResourceSpec,
    RATE_LIMITED, TIMEOUT, SERVER_ERROR, UNAVAILABLE, INVALID_SPEC,
    POLICY_VIOLATION, AUTH, NOT_FOUND, UNKNOWN, RETRYABLE_CODES,
)

logger = logging.getLogger(__name__)

# Keywords in gateway error text, checked in order
_MESSAGE_CODES = (
    ("rate limit", RATE_LIMITED),
    ("too many requests", RATE_LIMITED),
    ("quota", RATE_LIMITED),
    ("timed out", TIMEOUT),
    ("timeout", TIMEOUT),
    ("unavailable", UNAVAILABLE),
    ("internal error", SERVER_ERROR),
    ("policy", POLICY_VIOLATION),
    ("unauthorized", AUTH),
    ("permission", AUTH),
    ("invalid", INVALID_SPEC),
    ("validation", INVALID_SPEC),
)


class MCPToolError(Exception):
    """A tool call failed; ``code`` is one of the platform error codes."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def classify_status_code(status_code: int) -> str:
    if status_code == 429:
        return RATE_LIMITED
    if status_code in (408, 504):
        return TIMEOUT
    if status_code in (401, 403):
        return AUTH
    if status_code == 404:
        return NOT_FOUND
    if status_code == 503:
        return UNAVAILABLE
    if status_code >= 500:
        return SERVER_ERROR
    if status_code >= 400:
        return INVALID_SPEC
    return UNKNOWN


def classify_message(message: str) -> str:
    lowered = (message or "").lower()
    for keyword, code in _MESSAGE_CODES:
        if keyword in lowered:
            return code
    return UNKNOWN


def classify_exception(exc: BaseException) -> str:
    """Map a transport exception (possibly wrapped in an exception group) to an error code."""
    while hasattr(exc, "exceptions") and exc.exceptions:
        exc = exc.exceptions[0]
    if isinstance(exc, MCPToolError):
        return exc.code
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return TIMEOUT
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status_code(exc.response.status_code)
    if isinstance(exc, (httpx.TransportError, ConnectionError, OSError)):
        return UNAVAILABLE
    code = classify_message(str(exc))
    # An unexplained transport failure is treated as the gateway being unavailable
    return UNAVAILABLE if code == UNKNOWN else code


class MCPPlatformClient:
    """
    PlatformClient backed by a platform gateway MCP server.
    One session is opened per call; deployment steps are sequential anyway.
    """

    def __init__(self, platform: str, url: str, token: str = "", timeout: float = 30.0):
        self.platform = platform
        self.url = url
        self.token = token
        self.timeout = timeout

    @property
    def headers(self) -> dict[str, str]:
        h = {"Accept": "application/json, text/event-stream"}
        if self.token:
            h["Authorization"] = f"Bearer {self.token}"
        return h

    async def call_tool(self, tool_name: str, arguments: Optional[dict[str, Any]] = None) -> dict:
        """Call a single MCP tool and return the parsed payload. Raises on any failure."""
        arguments = arguments or {}
        logger.info(f"MCP call [{self.platform}]: {tool_name} with args keys: {list(arguments.keys())}")
        return await asyncio.wait_for(self._call_tool(tool_name, arguments), timeout=self.timeout)

    async def _call_tool(self, tool_name: str, arguments: dict[str, Any]) -> dict:
        async with streamablehttp_client(url=self.url, headers=self.headers, timeout=self.timeout) as (
            read_stream,
            write_stream,
            _,
        ):
            async with ClientSession(read_stream, write_stream) as session:
                await session.initialize()
                result = await session.call_tool(tool_name, arguments)
                return self._parse_result(result)

    @staticmethod
    def _parse_result(result) -> dict:
        """Parse an MCP tool result into a dict, raising MCPToolError for tool-level failures."""
        texts = [part.text for part in getattr(result, "content", []) if hasattr(part, "text")]
        text = "\n".join(texts)
        if getattr(result, "isError", False):
            raise MCPToolError(classify_message(text), text[:500] or "tool call failed")
        try:
            payload = json.loads(text) if text else {}
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"MCP response not valid JSON: {text[:500]}")
            raise MCPToolError(UNKNOWN, f"Unparseable gateway response: {text[:200]}")
        if not isinstance(payload, dict):
            raise MCPToolError(UNKNOWN, f"Unexpected gateway response type: {type(payload).__name__}")
        error = payload.get("error")
        if error:
            if isinstance(error, dict):
                message = str(error.get("message") or error)
                code = error.get("code") or classify_message(message)
            else:
                message = str(error)
                code = classify_message(message)
            raise MCPToolError(code, message)
        return payload

    async def _resource_call(self, tool_name: str, arguments: dict, kind: str) -> PlatformResult:
        try:
            payload = await self.call_tool(tool_name, arguments)
        except Exception as e:
            code = classify_exception(e)
            logger.warning(f"MCP tool call failed [{self.platform}]: {tool_name} ({code}) - {e}")
            return PlatformResult.failure(code, str(e) or code, retryable=code in RETRYABLE_CODES)

        resource = payload.get("resource")
        if not resource:
            return PlatformResult.not_found()
        if not isinstance(resource, dict) or not resource.get("id"):
            return PlatformResult.failure(UNKNOWN, f"Gateway returned a resource without an id: {resource!r}")
        return PlatformResult.success(ResourceRef(
            id=str(resource["id"]),
            kind=resource.get("kind") or kind,
            name=resource.get("name") or "",
        ))

    async def find_resource_by_name(self, parent_id: str, kind: str, name: str) -> PlatformResult:
        return await self._resource_call(
            "find_resource", {"parent_id": parent_id, "kind": kind, "name": name}, kind,
        )

    async def create_resource(self, parent_id: str, spec: ResourceSpec) -> PlatformResult:
        result = await self._resource_call(
            "create_resource", {"parent_id": parent_id, **spec.to_dict()}, spec.kind,
        )
        if result.ok and result.ref is None:
            return PlatformResult.failure(UNKNOWN, f"Gateway created no {spec.kind} for '{spec.name}'")
        return result

    async def upload_asset(self, account_id: str, data: bytes, name: str) -> PlatformResult:
        result = await self._resource_call(
            "upload_asset",
            {"account_id": account_id, "name": name, "data_base64": base64.b64encode(data).decode("ascii")},
            "asset",
        )
        if result.ok and result.ref is None:
            return PlatformResult.failure(UNKNOWN, f"Gateway returned no asset for '{name}'")
        return result


def create_platform_client(platform: str, settings: Optional[Settings] = None) -> Optional[MCPPlatformClient]:
    """Build the MCP client for a platform, or None when its gateway is not configured."""
    settings = settings or get_settings()
    if platform == Platform.GOOGLE_ADS.value:
        url, token = settings.google_ads_mcp_url, settings.google_ads_mcp_token
    elif platform == Platform.FACEBOOK_ADS.value:
        url, token = settings.facebook_ads_mcp_url, settings.facebook_ads_mcp_token
    else:
        raise ValueError(f"Unknown platform: {platform}")
    if not url:
        return None
    return MCPPlatformClient(platform, url, token, timeout=settings.platform_timeout_seconds)


def create_platform_clients(settings: Optional[Settings] = None) -> dict[str, MCPPlatformClient]:
    clients = {}
    for platform in Platform:
        client = create_platform_client(platform.value, settings)
        if client:
            clients[platform.value] = client
    return clients
