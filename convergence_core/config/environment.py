"""
Environment tables for service discovery.

Maps well-known environment variables to backing-service types, lists the
credential variables whose presence (never their value) is reported, and
holds the host/port matrix probed during network discovery.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


# ============================================================================
# STATIC TABLES
# ============================================================================

# endpoint type -> environment variables holding its URL, in lookup order
SERVICE_ENV_VARS: Dict[str, Tuple[str, ...]] = {
    "voice-provider": ("VOICE_PROVIDER_URL", "VOICE_SERVER_URL", "MOSHI_SERVER_URL"),
    "autonomous-agent": ("AUTONOMOUS_AGENT_URL", "AGENT_API_URL"),
    "research-agent": ("RESEARCH_AGENT_URL", "RESEARCH_BACKEND_URL"),
    "tool-bridge": ("TOOL_BRIDGE_URL", "MCP_SERVER_URL", "MCP_ENDPOINT"),
}

CREDENTIAL_ENV_VARS: Tuple[str, ...] = (
    "HF_TOKEN",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "COMPOSIO_API_KEY",
)

WELL_KNOWN_PORTS: Dict[str, Tuple[int, ...]] = {
    "voice-provider": (8998, 8999, 9000),
    "autonomous-agent": (8080, 3000, 5000),
    "research-agent": (8000, 8001, 5001),
    "tool-bridge": (3333, 3334),
}

DISCOVERY_HOSTS: Tuple[str, ...] = ("localhost", "127.0.0.1", "host.docker.internal")

# Voice providers speak websockets; everything else is plain HTTP.
WEBSOCKET_SERVICE_TYPES = frozenset({"voice-provider"})


@dataclass(frozen=True)
class EnvServiceEntry:
    """A service URL found in the environment."""
    service_type: str
    env_var: str
    url: str

    @property
    def endpoint_id(self) -> str:
        return f"{self.service_type}-env-{self.env_var.lower()}"


def scan_service_env(environ: Optional[Mapping[str, str]] = None) -> List[EnvServiceEntry]:
    """
    Scan the environment for service URLs.

    Every non-empty variable yields its own entry, so two variables that
    point at the same service type produce two endpoints.
    """
    env = os.environ if environ is None else environ
    entries: List[EnvServiceEntry] = []

    for service_type, env_vars in SERVICE_ENV_VARS.items():
        for env_var in env_vars:
            value = (env.get(env_var) or "").strip()
            if value:
                entries.append(EnvServiceEntry(service_type, env_var, value))

    return entries


def detect_credentials(environ: Optional[Mapping[str, str]] = None) -> Dict[str, bool]:
    """Report which credential variables are set. Values are never read out."""
    env = os.environ if environ is None else environ
    return {name: bool(env.get(name)) for name in CREDENTIAL_ENV_VARS}


def discovery_targets() -> List[Tuple[str, str, int]]:
    """Return the (service_type, host, port) matrix probed by discovery."""
    return [
        (service_type, host, port)
        for service_type, ports in WELL_KNOWN_PORTS.items()
        for host in DISCOVERY_HOSTS
        for port in ports
    ]


__all__ = [
    "SERVICE_ENV_VARS",
    "CREDENTIAL_ENV_VARS",
    "WELL_KNOWN_PORTS",
    "DISCOVERY_HOSTS",
    "WEBSOCKET_SERVICE_TYPES",
    "EnvServiceEntry",
    "scan_service_env",
    "detect_credentials",
    "discovery_targets",
]
