"""
Gateway wiring — builds the component graph from Settings.

  Gateway
    ├── catalog      RestaurantCatalog (demo domain)
    ├── tools        ToolRegistry      ─┐
    ├── prompts      PromptRegistry     ├─► dispatcher
    ├── resources    ResourceRegistry   │
    ├── sessions     DeviceAuthSessionStore ◄── provider (OAuthDeviceFlowClient)
    └── gate         AuthGate          ─┘
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from config import Settings, get_settings

from .auth_gate import AuthGate
from .catalog_tools import RestaurantCatalog, build_prompt_registry, build_resource_registry, build_tool_registry
from .device_auth import DeviceAuthSessionStore, DeviceFlowProvider
from .dispatcher import Dispatcher
from .oauth_provider import OAuthDeviceFlowClient
from .prompts import PromptRegistry, ResourceRegistry
from .tool_registry import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class Gateway:
    settings: Settings
    catalog: RestaurantCatalog
    tools: ToolRegistry
    prompts: PromptRegistry
    resources: ResourceRegistry
    sessions: DeviceAuthSessionStore
    gate: AuthGate
    dispatcher: Dispatcher


def build_gateway(
    settings: Settings,
    provider: Optional[DeviceFlowProvider] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> Gateway:
    if provider is None:
        provider = OAuthDeviceFlowClient(
            device_authorization_url=settings.device_authorization_url,
            token_url=settings.token_url,
            client_id=settings.OAUTH_CLIENT_ID,
            scope=settings.OAUTH_SCOPE,
            timeout=settings.OAUTH_TIMEOUT_SECONDS,
        )

    catalog = RestaurantCatalog()
    tools = build_tool_registry(catalog, item_delay=settings.STREAM_ITEM_DELAY_MS / 1000)
    prompts = build_prompt_registry()
    resources = build_resource_registry(catalog)
    sessions = DeviceAuthSessionStore(provider, grace_seconds=settings.AUTH_SESSION_GRACE_SECONDS, clock=clock)
    gate = AuthGate(
        sessions,
        api_keys=settings.API_KEYS,
        server_url=settings.SERVER_URL,
        enabled=settings.AUTH_REQUIRED,
        public_listing=settings.AUTH_PUBLIC_LISTING,
    )
    dispatcher = Dispatcher(
        tools,
        gate,
        prompts=prompts,
        resources=resources,
        server_info={
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "description": "JSON-RPC MCP gateway with streaming tools and device-code authentication",
        },
        protocol_version=settings.MCP_PROTOCOL_VERSION,
    )

    logger.info(
        f"Gateway ready — {len(tools.tool_names)} tools, auth_required={settings.AUTH_REQUIRED}, "
        f"public_listing={settings.AUTH_PUBLIC_LISTING}"
    )
    return Gateway(
        settings=settings,
        catalog=catalog,
        tools=tools,
        prompts=prompts,
        resources=resources,
        sessions=sessions,
        gate=gate,
        dispatcher=dispatcher,
    )


# ─── Singleton ────────────────────────────────────────────────────────────────

_gateway_instance: Optional[Gateway] = None


def get_gateway() -> Gateway:
    """Return the shared Gateway instance."""
    global _gateway_instance
    if _gateway_instance is None:
        _gateway_instance = build_gateway(get_settings())
    return _gateway_instance
