from __future__ import annotations

import functools
import json
import logging
import os
import sys
import time
from typing import Any, Callable, Dict, Optional

from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP

from .audit import AuditLog, AuditResult
from .authz import OperationPolicy
from .config import AppConfig, load_config
from .proxmox_client import ProxmoxClient
from .validation import ContainerCreateParams, VMCreateParams

logger = logging.getLogger(__name__)


def _with_guard(policy: OperationPolicy, operation: str, destructive: bool = False,
                audit: Optional[AuditLog] = None, user: Callable[[], str] = lambda: "unknown"):
    def deco(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                policy.check(operation, destructive=destructive, confirm=kwargs.get("confirm", False))
            except PermissionError as e:
                if audit is not None:
                    audit.record(operation=operation, user=user(), resource=operation,
                                 result=AuditResult.FAILURE, details=str(e))
                raise
            start = time.perf_counter()
            succeeded = False
            try:
                result = fn(*args, **kwargs)
                succeeded = True
                return result
            finally:
                dur = (time.perf_counter() - start) * 1000.0
                logger.debug("tool %s ok=%s in %.1f ms", operation, succeeded, dur)
        return wrapper
    return deco


def build_server(cfg: AppConfig, client: Optional[ProxmoxClient] = None) -> FastMCP:
    mcp = FastMCP(cfg.server.name, host=cfg.server.host, port=cfg.server.port)
    client = client or ProxmoxClient(cfg)
    policy = OperationPolicy(cfg.safety)

    def tool(name: str, destructive: bool = False):
        """Register ``fn`` as an MCP tool behind the operation policy."""
        def decorator(fn):
            guard = _with_guard(policy, name, destructive, audit=client.audit, user=lambda: client.session.user)
            mcp.tool(name=name)(guard(fn))
            return fn
        return decorator

    def ok(**payload: Any) -> Dict[str, Any]:
        return {"ok": True, "meta": {"host": client.host}, **payload}

    # --- VMs ---

    @tool("list_vms")
    def list_vms() -> Dict[str, Any]:
        """List all virtual machines across all nodes."""
        vms = client.list_vms()
        return ok(count=len(vms), vms=vms)

    @tool("get_vm_status")
    def get_vm_status(node: str, vmid: int) -> Dict[str, Any]:
        """Get the current status of a virtual machine."""
        return ok(vm=client.get_vm_status(node, vmid))

    @tool("start_vm")
    def start_vm(node: str, vmid: int) -> Dict[str, Any]:
        """Start a virtual machine."""
        return ok(result=client.start_vm(node, vmid), message=f"VM {vmid} on node {node} started")

    @tool("stop_vm")
    def stop_vm(node: str, vmid: int, force: bool = False) -> Dict[str, Any]:
        """Stop a virtual machine (graceful shutdown unless force=True)."""
        data = client.stop_vm(node, vmid, force=force)
        return ok(result=data, message=f"VM {vmid} on node {node} {'stopped' if force else 'shutdown initiated'}")

    @tool("restart_vm")
    def restart_vm(node: str, vmid: int) -> Dict[str, Any]:
        """Restart a virtual machine."""
        return ok(result=client.restart_vm(node, vmid), message=f"VM {vmid} on node {node} restarted")

    @tool("create_vm")
    def create_vm(node: str, vmid: int, name: Optional[str] = None, cores: int = 1, memory: int = 512,
                  disk: Optional[str] = None, ostype: str = "l26", iso: Optional[str] = None,
                  net0: Optional[str] = None, storage: str = "local-lvm") -> Dict[str, Any]:
        """Create a new virtual machine."""
        params = VMCreateParams(node=node, vmid=vmid, name=name, cores=cores, memory=memory, disk=disk,
                                ostype=ostype, iso=iso, net0=net0, storage=storage)
        return ok(result=client.create_vm(params), message=f"VM {vmid} created on node {node}")

    @tool("delete_vm", destructive=True)
    def delete_vm(node: str, vmid: int, purge: bool = False, confirm: bool = False) -> Dict[str, Any]:
        """Delete a virtual machine. Requires confirm=True."""
        return ok(result=client.delete_vm(node, vmid, purge=purge), message=f"VM {vmid} on node {node} deleted")

    @tool("clone_vm")
    def clone_vm(node: str, vmid: int, newid: int, name: Optional[str] = None, full: bool = False) -> Dict[str, Any]:
        """Clone a virtual machine."""
        data = client.clone_vm(node, vmid, newid, name=name, full=full)
        return ok(result=data, message=f"VM {vmid} cloned to {newid} on node {node}")

    @tool("get_vm_config")
    def get_vm_config(node: str, vmid: int) -> Dict[str, Any]:
        """Get virtual machine configuration."""
        return ok(config=client.get_vm_config(node, vmid))

    # --- Containers ---

    @tool("list_containers")
    def list_containers() -> Dict[str, Any]:
        """List all containers (LXC) across all nodes."""
        cts = client.list_containers()
        return ok(count=len(cts), containers=cts)

    @tool("get_container_status")
    def get_container_status(node: str, vmid: int) -> Dict[str, Any]:
        """Get the current status of a container."""
        return ok(container=client.get_container_status(node, vmid))

    @tool("start_container")
    def start_container(node: str, vmid: int) -> Dict[str, Any]:
        """Start a container."""
        return ok(result=client.start_container(node, vmid), message=f"Container {vmid} on node {node} started")

    @tool("stop_container")
    def stop_container(node: str, vmid: int, force: bool = False) -> Dict[str, Any]:
        """Stop a container (graceful shutdown unless force=True)."""
        data = client.stop_container(node, vmid, force=force)
        return ok(result=data,
                  message=f"Container {vmid} on node {node} {'stopped' if force else 'shutdown initiated'}")

    @tool("create_container")
    def create_container(node: str, vmid: int, ostemplate: str, hostname: Optional[str] = None, cores: int = 1,
                         memory: int = 512, rootfs: Optional[str] = None, password: Optional[str] = None,
                         net0: Optional[str] = None, storage: str = "local-lvm") -> Dict[str, Any]:
        """Create a new container."""
        params = ContainerCreateParams(node=node, vmid=vmid, ostemplate=ostemplate, hostname=hostname,
                                       cores=cores, memory=memory, rootfs=rootfs, password=password,
                                       net0=net0, storage=storage)
        return ok(result=client.create_container(params), message=f"Container {vmid} created on node {node}")

    @tool("delete_container", destructive=True)
    def delete_container(node: str, vmid: int, purge: bool = False, confirm: bool = False) -> Dict[str, Any]:
        """Delete a container. Requires confirm=True."""
        data = client.delete_container(node, vmid, purge=purge)
        return ok(result=data, message=f"Container {vmid} on node {node} deleted")

    # --- Nodes ---

    @tool("list_nodes")
    def list_nodes() -> Dict[str, Any]:
        """List all nodes in the Proxmox cluster."""
        nodes = client.list_nodes()
        return ok(count=len(nodes), nodes=nodes)

    @tool("get_node_status")
    def get_node_status(node: str) -> Dict[str, Any]:
        """Get the status of a specific node."""
        return ok(status=client.get_node_status(node))

    @tool("reboot_node", destructive=True)
    def reboot_node(node: str, confirm: bool = False) -> Dict[str, Any]:
        """Reboot a node. Requires confirm=True."""
        return ok(result=client.reboot_node(node), message=f"Node {node} reboot initiated")

    @tool("shutdown_node", destructive=True)
    def shutdown_node(node: str, confirm: bool = False) -> Dict[str, Any]:
        """Shut down a node. Requires confirm=True."""
        return ok(result=client.shutdown_node(node), message=f"Node {node} shutdown initiated")

    # --- Storage ---

    @tool("list_storage")
    def list_storage() -> Dict[str, Any]:
        """List all storage definitions in the cluster."""
        data = client.list_storage()
        return ok(count=len(data), storage=data)

    @tool("get_storage_status")
    def get_storage_status(node: str, storage: str) -> Dict[str, Any]:
        """Get the status of a specific storage on a node."""
        return ok(status=client.get_storage_status(node, storage))

    @tool("list_storage_content")
    def list_storage_content(node: str, storage: str, content: Optional[str] = None) -> Dict[str, Any]:
        """List content in a storage, optionally filtered by content type."""
        data = client.list_storage_content(node, storage, content=content)
        return ok(count=(len(data) if isinstance(data, list) else None), content=data)

    @tool("delete_storage_content", destructive=True)
    def delete_storage_content(node: str, storage: str, volid: str, confirm: bool = False) -> Dict[str, Any]:
        """Delete a volume from storage. Requires confirm=True."""
        data = client.delete_storage_content(node, storage, volid)
        return ok(result=data, message=f"Content {volid} deleted from storage {storage}")

    # --- Resources ---

    @mcp.resource("proxmox://cluster/overview", name="Cluster Overview", mime_type="application/json")
    def cluster_overview() -> str:
        """Overview of the entire Proxmox cluster."""
        nodes = client.list_nodes()
        vms = client.list_vms()
        containers = client.list_containers()
        return json.dumps({
            "nodes": len(nodes),
            "vms": len(vms),
            "containers": len(containers),
            "details": {"nodes": nodes, "vms": vms, "containers": containers},
        }, indent=2)

    @mcp.resource("proxmox://audit/logs", name="Security Audit Logs", mime_type="application/json")
    def audit_logs() -> str:
        """Security audit logs for all operations."""
        return json.dumps([e.to_dict() for e in client.audit_entries()], indent=2)

    # --- Prompts ---

    @mcp.prompt(name="create-vm-wizard", description="Interactive wizard to create a new virtual machine")
    def create_vm_wizard(node: str) -> str:
        return f"I want to create a new VM on node {node or '[specify node]'}. Please help me configure it step by step."

    @mcp.prompt(name="vm-health-check", description="Check the health status of all VMs")
    def vm_health_check() -> str:
        return "Please check the health status of all VMs and report any issues."

    @mcp.prompt(name="cluster-overview", description="Get an overview of the entire Proxmox cluster")
    def cluster_overview_prompt() -> str:
        return ("Please provide a comprehensive overview of the Proxmox cluster including nodes, VMs, "
                "containers, and resource usage.")

    return mcp


def main() -> None:
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cfg = load_config()
    mcp = build_server(cfg)
    logger.info("Proxmox MCP server for %s starting (%s)", cfg.proxmox.host, cfg.server.transport)
    mcp.run(transport=cfg.server.transport)


if __name__ == "__main__":
    main()
