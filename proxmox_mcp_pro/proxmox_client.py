from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

from .audit import AuditEntry, AuditLog, JsonlAuditSink, LoggingAuditSink
from .authz import RateLimiter, monotonic_ms
from .config import AppConfig
from .dispatcher import RequestDispatcher
from .errors import ProxmoxError
from .session import SessionManager
from .transport import RequestsTransport, Transport
from .validation import (
    ContainerCreateParams,
    VMCreateParams,
    strip_control_chars,
    validate_node_name,
    validate_storage_name,
    validate_vmid,
)

logger = logging.getLogger(__name__)


class ProxmoxClient:
    """Proxmox VE API client: rate limited, authenticated and audited."""

    def __init__(
        self,
        cfg: AppConfig,
        transport: Optional[Transport] = None,
        *,
        clock: Callable[[], float] = monotonic_ms,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._cfg = cfg
        credentials = cfg.proxmox.credentials()
        self._transport = transport or RequestsTransport(cfg.proxmox)
        self.session = SessionManager(credentials, self._transport)
        self.limiter = RateLimiter.from_config(cfg.ratelimit, clock=clock)

        self.audit = AuditLog(cfg.audit.max_entries)
        self._jsonl: Optional[JsonlAuditSink] = None
        if cfg.audit.console:
            self.audit.add_sink(LoggingAuditSink())
        if cfg.audit.log_path:
            self._jsonl = JsonlAuditSink(cfg.audit.log_path)
            self.audit.add_sink(self._jsonl)

        self.dispatcher = RequestDispatcher(
            self._transport,
            self.session,
            self.limiter,
            self.audit,
            max_retries=cfg.retry.max_retries,
            backoff_ms=cfg.retry.backoff_ms,
            sleep=sleep,
        )

    @property
    def host(self) -> str:
        return self._cfg.proxmox.host

    def close(self) -> None:
        close = getattr(self._transport, "close", None)
        if close:
            close()
        if self._jsonl:
            self._jsonl.close()

    # --- Raw requests ---

    def request(self, method: str, path: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return self.dispatcher.dispatch(method, path, data)

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params)

    def post(self, path: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("POST", path, data)

    def put(self, path: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("PUT", path, data)

    def delete(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("DELETE", path, params)

    def audit_entries(self, limit: Optional[int] = None) -> List[AuditEntry]:
        return self.audit.read(limit)

    # --- Nodes ---

    def list_nodes(self) -> List[Dict[str, Any]]:
        return self.get("/nodes") or []

    def get_node_status(self, node: str) -> Any:
        return self.get(f"/nodes/{validate_node_name(node)}/status")

    def get_node_version(self, node: str) -> Any:
        return self.get(f"/nodes/{validate_node_name(node)}/version")

    def get_node_network(self, node: str) -> Any:
        return self.get(f"/nodes/{validate_node_name(node)}/network")

    def get_node_services(self, node: str) -> Any:
        return self.get(f"/nodes/{validate_node_name(node)}/services")

    def get_node_subscription(self, node: str) -> Any:
        return self.get(f"/nodes/{validate_node_name(node)}/subscription")

    def get_node_tasks(self, node: str, limit: int = 50) -> Any:
        return self.get(f"/nodes/{validate_node_name(node)}/tasks", {"limit": int(limit)})

    def reboot_node(self, node: str) -> Any:
        return self.post(f"/nodes/{validate_node_name(node)}/status", {"command": "reboot"})

    def shutdown_node(self, node: str) -> Any:
        return self.post(f"/nodes/{validate_node_name(node)}/status", {"command": "shutdown"})

    def _per_node(self, kind: str) -> List[Dict[str, Any]]:
        """Collect ``/nodes/<node>/<kind>`` from every node, skipping nodes that fail."""
        items: List[Dict[str, Any]] = []
        for n in self.list_nodes():
            name = n.get("node")
            if not name:
                continue
            try:
                for item in self.get(f"/nodes/{validate_node_name(name)}/{kind}") or []:
                    items.append({**item, "node": name})
            except (ProxmoxError, ValueError) as e:
                logger.warning("Failed to list %s for node %s: %s", kind, name, e)
        return items

    # --- VMs (qemu) ---

    def list_vms(self) -> List[Dict[str, Any]]:
        return self._per_node("qemu")

    def get_vm_status(self, node: str, vmid: int) -> Any:
        return self.get(f"/nodes/{validate_node_name(node)}/qemu/{validate_vmid(vmid)}/status/current")

    def start_vm(self, node: str, vmid: int) -> Any:
        return self.post(f"/nodes/{validate_node_name(node)}/qemu/{validate_vmid(vmid)}/status/start")

    def stop_vm(self, node: str, vmid: int, force: bool = False) -> Any:
        action = "stop" if force else "shutdown"
        return self.post(f"/nodes/{validate_node_name(node)}/qemu/{validate_vmid(vmid)}/status/{action}")

    def restart_vm(self, node: str, vmid: int) -> Any:
        return self.post(f"/nodes/{validate_node_name(node)}/qemu/{validate_vmid(vmid)}/status/reboot")

    def create_vm(self, params: VMCreateParams) -> Any:
        return self.post(f"/nodes/{params.node}/qemu", params.to_api())

    def delete_vm(self, node: str, vmid: int, purge: bool = False) -> Any:
        return self.delete(
            f"/nodes/{validate_node_name(node)}/qemu/{validate_vmid(vmid)}",
            {"purge": 1} if purge else None,
        )

    def clone_vm(self, node: str, vmid: int, newid: int, name: Optional[str] = None, full: bool = False) -> Any:
        body: Dict[str, Any] = {"newid": validate_vmid(newid), "full": 1 if full else 0}
        if name:
            body["name"] = strip_control_chars(name)
        return self.post(f"/nodes/{validate_node_name(node)}/qemu/{validate_vmid(vmid)}/clone", body)

    def get_vm_config(self, node: str, vmid: int) -> Any:
        return self.get(f"/nodes/{validate_node_name(node)}/qemu/{validate_vmid(vmid)}/config")

    def update_vm_config(self, node: str, vmid: int, config: Dict[str, Any]) -> Any:
        return self.put(f"/nodes/{validate_node_name(node)}/qemu/{validate_vmid(vmid)}/config", config)

    # --- Containers (lxc) ---

    def list_containers(self) -> List[Dict[str, Any]]:
        return self._per_node("lxc")

    def get_container_status(self, node: str, vmid: int) -> Any:
        return self.get(f"/nodes/{validate_node_name(node)}/lxc/{validate_vmid(vmid)}/status/current")

    def start_container(self, node: str, vmid: int) -> Any:
        return self.post(f"/nodes/{validate_node_name(node)}/lxc/{validate_vmid(vmid)}/status/start")

    def stop_container(self, node: str, vmid: int, force: bool = False) -> Any:
        action = "stop" if force else "shutdown"
        return self.post(f"/nodes/{validate_node_name(node)}/lxc/{validate_vmid(vmid)}/status/{action}")

    def restart_container(self, node: str, vmid: int) -> Any:
        return self.post(f"/nodes/{validate_node_name(node)}/lxc/{validate_vmid(vmid)}/status/reboot")

    def create_container(self, params: ContainerCreateParams) -> Any:
        return self.post(f"/nodes/{params.node}/lxc", params.to_api())

    def delete_container(self, node: str, vmid: int, purge: bool = False) -> Any:
        return self.delete(
            f"/nodes/{validate_node_name(node)}/lxc/{validate_vmid(vmid)}",
            {"purge": 1} if purge else None,
        )

    def clone_container(self, node: str, vmid: int, newid: int, hostname: Optional[str] = None,
                        full: bool = False) -> Any:
        body: Dict[str, Any] = {"newid": validate_vmid(newid), "full": 1 if full else 0}
        if hostname:
            body["hostname"] = strip_control_chars(hostname)
        return self.post(f"/nodes/{validate_node_name(node)}/lxc/{validate_vmid(vmid)}/clone", body)

    def get_container_config(self, node: str, vmid: int) -> Any:
        return self.get(f"/nodes/{validate_node_name(node)}/lxc/{validate_vmid(vmid)}/config")

    def update_container_config(self, node: str, vmid: int, config: Dict[str, Any]) -> Any:
        return self.put(f"/nodes/{validate_node_name(node)}/lxc/{validate_vmid(vmid)}/config", config)

    # --- Storage ---

    def list_storage(self) -> Any:
        return self.get("/storage") or []

    def get_storage_status(self, node: str, storage: str) -> Any:
        return self.get(f"/nodes/{validate_node_name(node)}/storage/{validate_storage_name(storage)}/status")

    def list_storage_content(self, node: str, storage: str, content: Optional[str] = None) -> Any:
        return self.get(
            f"/nodes/{validate_node_name(node)}/storage/{validate_storage_name(storage)}/content",
            {"content": content} if content else None,
        )

    def delete_storage_content(self, node: str, storage: str, volid: str) -> Any:
        return self.delete(
            f"/nodes/{validate_node_name(node)}/storage/{validate_storage_name(storage)}"
            f"/content/{quote(volid, safe='')}"
        )
