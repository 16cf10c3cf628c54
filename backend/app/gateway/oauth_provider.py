"""
RFC 8628 device authorization client.

  POST {authority}/{tenant}/oauth2/v2.0/devicecode   client_id, scope
  POST {authority}/{tenant}/oauth2/v2.0/token        grant_type, client_id, device_code

Token endpoint errors (authorization_pending, slow_down, expired_token,
access_denied, ...) come back as HTTP 400 with an OAuth error body; they are
returned as TokenPollResponse.error, not raised. Network failures and 5xx
answers raise ProviderUnavailable.
"""
import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from models.auth import DeviceCodeGrant, TokenPollResponse

from .errors import ProviderError, ProviderUnavailable

logger = logging.getLogger(__name__)

DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"


class OAuthDeviceFlowClient:
    def __init__(
        self,
        device_authorization_url: str,
        token_url: str,
        client_id: str,
        scope: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.device_authorization_url = device_authorization_url
        self.token_url = token_url
        self.client_id = client_id
        self.scope = scope
        self.timeout = timeout
        self._transport = transport

    async def request_device_code(self) -> DeviceCodeGrant:
        data = await self._post(
            self.device_authorization_url,
            {"client_id": self.client_id, "scope": self.scope},
        )
        if "error" in data:
            raise ProviderError(
                f"Device code request rejected: {data.get('error_description') or data['error']}",
                error_code=data["error"],
            )
        try:
            return DeviceCodeGrant.model_validate(data)
        except ValidationError as e:
            raise ProviderUnavailable(f"Malformed device code response: {e}") from e

    async def poll_token(self, device_code: str) -> TokenPollResponse:
        data = await self._post(
            self.token_url,
            {
                "grant_type": DEVICE_CODE_GRANT_TYPE,
                "client_id": self.client_id,
                "device_code": device_code,
            },
        )
        response = TokenPollResponse.model_validate(data)
        if not response.access_token and not response.error:
            raise ProviderUnavailable("Token response carried neither access_token nor error")
        return response

    async def _post(self, url: str, form: dict[str, str]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, data=form, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            logger.warning(f"OAuth: request to {url} failed: {exc}")
            raise ProviderUnavailable(f"OAuth provider unreachable: {exc}") from exc

        if resp.status_code >= 500:
            logger.warning(f"OAuth: {url} answered {resp.status_code}")
            raise ProviderUnavailable(f"OAuth provider error: HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderUnavailable(f"OAuth provider returned non-JSON (HTTP {resp.status_code})") from exc
        if not isinstance(data, dict):
            raise ProviderUnavailable("OAuth provider returned a non-object body")

        if resp.status_code >= 400 and "error" not in data:
            data["error"] = f"http_{resp.status_code}"
        return data
