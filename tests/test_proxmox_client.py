"""Tests for the ProxmoxClient resource methods."""

from __future__ import annotations

import pytest

from proxmox_mcp_pro.audit import AuditResult
from proxmox_mcp_pro.config import AppConfig, AuditConfig, ProxmoxConfig
from proxmox_mcp_pro.errors import ConfigurationError, HTTPError
from proxmox_mcp_pro.proxmox_client import ProxmoxClient
from proxmox_mcp_pro.transport import TransportResponse
from proxmox_mcp_pro.validation import VMCreateParams

from .conftest import FakeTransport


class RoutingTransport(FakeTransport):
    """Answers by path; unknown paths return 404."""

    def __init__(self, routes):
        super().__init__()
        self.routes = routes

    def send(self, method, path, body=None, headers=None, *, form=False):
        if path == "/access/ticket":
            return super().send(method, path, body, headers, form=form)
        self.calls.append({"method": method, "path": path, "body": body, "headers": dict(headers or {}), "form": form})
        if path not in self.routes:
            return TransportResponse(404, {"data": None, "message": f"no such path {path}"})
        return TransportResponse(200, {"data": self.routes[path]})


@pytest.fixture
def client(app_config, clock, sleeps):
    def _make(routes):
        transport = RoutingTransport(routes)
        return ProxmoxClient(app_config, transport, clock=clock, sleep=sleeps.append), transport
    return _make


class TestProxmoxClient:
    def test_list_vms_tags_node_and_skips_failing_nodes(self, client) -> None:
        c, _ = client({
            "/nodes": [{"node": "pve1"}, {"node": "pve2"}, {"node": "pve3"}],
            "/nodes/pve1/qemu": [{"vmid": 100, "name": "web"}],
            "/nodes/pve3/qemu": [{"vmid": 300, "name": "db"}],
        })
        vms = c.list_vms()
        assert vms == [
            {"vmid": 100, "name": "web", "node": "pve1"},
            {"vmid": 300, "name": "db", "node": "pve3"},
        ]
        failures = [e for e in c.audit_entries() if e.result is AuditResult.FAILURE]
        assert [e.resource for e in failures] == ["/nodes/pve2/qemu"]

    def test_list_containers(self, client) -> None:
        c, _ = client({"/nodes": [{"node": "pve1"}], "/nodes/pve1/lxc": [{"vmid": 200}]})
        assert c.list_containers() == [{"vmid": 200, "node": "pve1"}]

    def test_stop_vm_graceful_and_forced(self, client) -> None:
        c, transport = client({
            "/nodes/pve1/qemu/100/status/shutdown": "UPID:shutdown",
            "/nodes/pve1/qemu/100/status/stop": "UPID:stop",
        })
        assert c.stop_vm("pve1", 100) == "UPID:shutdown"
        assert c.stop_vm("pve1", 100, force=True) == "UPID:stop"
        assert [call["method"] for call in transport.api_calls] == ["POST", "POST"]

    def test_restart_container(self, client) -> None:
        c, transport = client({"/nodes/pve1/lxc/200/status/reboot": "UPID:reboot"})
        assert c.restart_container("pve1", 200) == "UPID:reboot"

    def test_create_vm_posts_api_body(self, client) -> None:
        c, transport = client({"/nodes/pve1/qemu": "UPID:create"})
        c.create_vm(VMCreateParams(node="pve1", vmid=105, name="app", cores=2))
        call = transport.api_calls[0]
        assert call["body"] == {"vmid": 105, "cores": 2, "memory": 512, "ostype": "l26", "name": "app"}

    def test_delete_vm_with_purge(self, client) -> None:
        c, transport = client({"/nodes/pve1/qemu/100": "UPID:destroy"})
        c.delete_vm("pve1", 100, purge=True)
        call = transport.api_calls[0]
        assert call["method"] == "DELETE"
        assert call["body"] == {"purge": 1}

    def test_clone_vm(self, client) -> None:
        c, transport = client({"/nodes/pve1/qemu/100/clone": "UPID:clone"})
        c.clone_vm("pve1", 100, 101, name="copy\n", full=True)
        assert transport.api_calls[0]["body"] == {"newid": 101, "full": 1, "name": "copy"}

    @pytest.mark.parametrize("method, path", [
        ("get_node_version", "/nodes/pve1/version"),
        ("get_node_network", "/nodes/pve1/network"),
        ("get_node_services", "/nodes/pve1/services"),
        ("get_node_subscription", "/nodes/pve1/subscription"),
    ])
    def test_node_read_endpoints(self, client, method, path) -> None:
        c, transport = client({path: {"ok": 1}})
        assert getattr(c, method)("pve1") == {"ok": 1}
        (call,) = transport.api_calls
        assert (call["method"], call["path"]) == ("GET", path)

    def test_get_node_tasks_default_limit(self, client) -> None:
        c, transport = client({"/nodes/pve1/tasks": [{"upid": "UPID:1"}]})
        assert c.get_node_tasks("pve1") == [{"upid": "UPID:1"}]
        assert transport.api_calls[0]["body"] == {"limit": 50}

    def test_update_vm_config(self, client) -> None:
        c, transport = client({"/nodes/pve1/qemu/100/config": None})
        c.update_vm_config("pve1", 100, {"cores": 4})
        call = transport.api_calls[0]
        assert (call["method"], call["body"]) == ("PUT", {"cores": 4})

    def test_get_container_config(self, client) -> None:
        c, transport = client({"/nodes/pve1/lxc/200/config": {"hostname": "ct-1"}})
        assert c.get_container_config("pve1", 200) == {"hostname": "ct-1"}
        assert transport.api_calls[0]["method"] == "GET"

    def test_clone_container(self, client) -> None:
        c, transport = client({"/nodes/pve1/lxc/200/clone": "UPID:clone"})
        assert c.clone_container("pve1", 200, 201, hostname="ct-copy\t") == "UPID:clone"
        assert transport.api_calls[0]["body"] == {"newid": 201, "full": 0, "hostname": "ct-copy"}

    def test_update_container_config(self, client) -> None:
        c, transport = client({"/nodes/pve1/lxc/200/config": None})
        c.update_container_config("pve1", 200, {"memory": 1024})
        call = transport.api_calls[0]
        assert call["method"] == "PUT"
        assert call["body"] == {"memory": 1024}

    def test_node_commands(self, client) -> None:
        c, transport = client({"/nodes/pve1/status": None, "/nodes/pve1/tasks": []})
        c.reboot_node("pve1")
        c.get_node_tasks("pve1", limit=5)
        assert transport.api_calls[0]["body"] == {"command": "reboot"}
        assert transport.api_calls[1]["body"] == {"limit": 5}

    def test_storage_content_filter_and_volid_encoding(self, client) -> None:
        c, transport = client({
            "/nodes/pve1/storage/local/content": [],
            "/nodes/pve1/storage/local/content/local%3Aiso%2Fdebian.iso": None,
        })
        c.list_storage_content("pve1", "local", content="iso")
        c.delete_storage_content("pve1", "local", "local:iso/debian.iso")
        assert transport.api_calls[0]["body"] == {"content": "iso"}
        assert transport.api_calls[1]["path"] == "/nodes/pve1/storage/local/content/local%3Aiso%2Fdebian.iso"

    def test_invalid_arguments_never_reach_the_network(self, client) -> None:
        c, transport = client({})
        with pytest.raises(ValueError):
            c.start_vm("../../access", 100)
        with pytest.raises(ValueError):
            c.start_vm("pve1", 5)
        assert transport.calls == []

    def test_not_found_raises_http_error(self, client) -> None:
        c, _ = client({})
        with pytest.raises(HTTPError) as exc_info:
            c.get_vm_config("pve1", 999)
        assert exc_info.value.is_not_found
        assert "no such path" in str(exc_info.value)

    def test_audit_entries_limit(self, client) -> None:
        c, _ = client({"/nodes": []})
        for _ in range(3):
            c.list_nodes()
        assert len(c.audit_entries()) == 3
        assert len(c.audit_entries(2)) == 2


def test_jsonl_audit_file(tmp_path, clock) -> None:
    path = tmp_path / "audit.jsonl"
    cfg = AppConfig(
        proxmox=ProxmoxConfig(host="pve", username="root", token_id="t", token_secret="s"),
        audit=AuditConfig(console=False, log_path=str(path)),
    )
    c = ProxmoxClient(cfg, FakeTransport([TransportResponse(200, {"data": []})]), clock=clock)
    c.list_nodes()
    c.close()
    assert '"result": "success"' in path.read_text()


def test_audit_file_not_opened_when_credentials_are_invalid(tmp_path, clock) -> None:
    path = tmp_path / "audit.jsonl"
    cfg = AppConfig(
        proxmox=ProxmoxConfig(host="pve", username="root", password="   "),
        audit=AuditConfig(console=False, log_path=str(path)),
    )
    with pytest.raises(ConfigurationError):
        ProxmoxClient(cfg, FakeTransport(), clock=clock)
    assert not path.exists()
