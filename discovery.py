"""
mDNS/DNS-SD discovery of CapyDeploy agents.
"""

from __future__ import annotations

import socket
import threading
import time
from typing import Optional

from zeroconf import ServiceBrowser, ServiceInfo, ServiceListener, Zeroconf

from log import logger

MDNS_SERVICE_TYPE = "_capydeploy._tcp.local."
DISCOVERY_TIMEOUT = 3.0
INFO_TIMEOUT_MS = 2000


def _prop(properties: dict, key: str) -> str:
    value = properties.get(key.encode())
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def agent_from_info(info: ServiceInfo) -> Optional[dict]:
    """Turn a resolved ServiceInfo into an agent dict. None when it has no address."""
    addresses = info.addresses or []
    if not addresses or not info.port:
        return None

    host = socket.inet_ntoa(addresses[0]) if len(addresses[0]) == 4 else socket.inet_ntop(
        socket.AF_INET6, addresses[0]
    )
    props = info.properties or {}
    agent_id = _prop(props, "id") or info.name.split(".", 1)[0]
    url_host = f"[{host}]" if ":" in host else host

    return {
        "id": agent_id,
        "name": _prop(props, "name") or agent_id,
        "platform": _prop(props, "platform"),
        "version": _prop(props, "version"),
        "host": host,
        "port": info.port,
        "url": f"ws://{url_host}:{info.port}",
    }


class AgentListener(ServiceListener):
    """Collects agents as the browser resolves them."""

    def __init__(self) -> None:
        self.agents: dict[str, dict] = {}
        self._lock = threading.Lock()

    def add_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        info = zc.get_service_info(type_, name, timeout=INFO_TIMEOUT_MS)
        if info is None:
            logger.debug(f"mDNS: could not resolve {name}")
            return
        agent = agent_from_info(info)
        if agent is None:
            return
        with self._lock:
            self.agents[name] = agent
        logger.info(f"mDNS: found agent {agent['name']} at {agent['url']}")

    def update_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        self.add_service(zc, type_, name)

    def remove_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        with self._lock:
            agent = self.agents.pop(name, None)
        if agent:
            logger.info(f"mDNS: agent {agent['name']} went away")

    def snapshot(self) -> list[dict]:
        with self._lock:
            return sorted(self.agents.values(), key=lambda a: a["name"])


def discover_agents(timeout: float = DISCOVERY_TIMEOUT) -> list[dict]:
    """Browse the local network for ``timeout`` seconds. Blocking; run it in a thread."""
    zeroconf = Zeroconf()
    listener = AgentListener()
    try:
        ServiceBrowser(zeroconf, MDNS_SERVICE_TYPE, listener)
        time.sleep(timeout)
    finally:
        zeroconf.close()

    agents = listener.snapshot()
    logger.info(f"mDNS: {len(agents)} agent(s) discovered")
    return agents
