from __future__ import annotations

import re
from typing import Literal, Optional

from pydantic import BaseModel, Field

VMID_MIN = 100
VMID_MAX = 999_999_999

_NODE_NAME = re.compile(r"[a-zA-Z0-9-]{1,63}")
_STORAGE_NAME = re.compile(r"[a-zA-Z0-9_-]{1,100}")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def strip_control_chars(value: str) -> str:
    """Remove null bytes and other control characters from free-form input."""
    return _CONTROL_CHARS.sub("", value)


def validate_vmid(vmid: int) -> int:
    if isinstance(vmid, bool) or not isinstance(vmid, int) or not VMID_MIN <= vmid <= VMID_MAX:
        raise ValueError(f"Invalid VMID: must be an integer between {VMID_MIN} and {VMID_MAX}")
    return vmid


def validate_node_name(node: str) -> str:
    if not isinstance(node, str) or not _NODE_NAME.fullmatch(node):
        raise ValueError(f"Invalid node name: {node!r}")
    return node


def validate_storage_name(storage: str) -> str:
    if not isinstance(storage, str) or not _STORAGE_NAME.fullmatch(storage):
        raise ValueError(f"Invalid storage name: {storage!r}")
    return storage


class VMCreateParams(BaseModel):
    node: str = Field(pattern=r"^[a-zA-Z0-9-]+$", min_length=1, max_length=63)
    vmid: int = Field(ge=VMID_MIN, le=VMID_MAX)
    name: Optional[str] = Field(default=None, pattern=r"^[a-zA-Z0-9-]+$", min_length=1, max_length=63)
    cores: int = Field(default=1, ge=1, le=128)
    memory: int = Field(default=512, ge=16, le=8_388_608)
    disk: Optional[str] = None
    ostype: Literal["l26", "l24", "win10", "win11", "other"] = "l26"
    iso: Optional[str] = None
    net0: Optional[str] = None
    storage: str = "local-lvm"

    def to_api(self) -> dict:
        data = {"vmid": self.vmid, "cores": self.cores, "memory": self.memory, "ostype": self.ostype}
        if self.name:
            data["name"] = strip_control_chars(self.name)
        if self.disk:
            data["scsi0"] = self.disk
        if self.iso:
            data["cdrom"] = self.iso
        if self.net0:
            data["net0"] = self.net0
        return data


class ContainerCreateParams(BaseModel):
    node: str = Field(pattern=r"^[a-zA-Z0-9-]+$", min_length=1, max_length=63)
    vmid: int = Field(ge=VMID_MIN, le=VMID_MAX)
    hostname: Optional[str] = Field(default=None, pattern=r"^[a-zA-Z0-9-]+$", min_length=1, max_length=63)
    cores: int = Field(default=1, ge=1, le=128)
    memory: int = Field(default=512, ge=16, le=8_388_608)
    rootfs: Optional[str] = None
    ostemplate: str = Field(min_length=1)
    password: Optional[str] = Field(default=None, min_length=5, repr=False)
    net0: Optional[str] = None
    storage: str = "local-lvm"

    def to_api(self) -> dict:
        data = {
            "vmid": self.vmid,
            "cores": self.cores,
            "memory": self.memory,
            "ostemplate": self.ostemplate,
            "storage": self.storage,
        }
        if self.hostname:
            data["hostname"] = strip_control_chars(self.hostname)
        if self.rootfs:
            data["rootfs"] = self.rootfs
        if self.password:
            data["password"] = self.password
        if self.net0:
            data["net0"] = self.net0
        return data
