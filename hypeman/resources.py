"""Host resource capacity and allocation reporting."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from hypeman.requestconfig import RequestOption, execute_new_request


def _require_object(data: Any, kind: str) -> dict:
    if not isinstance(data, dict):
        raise TypeError(f"expected a JSON object for {kind}, got {type(data).__name__}")
    return data


def _extras(data: dict, known: tuple[str, ...]) -> dict:
    return {key: value for key, value in data.items() if key not in known}


@dataclass
class DiskBreakdown:
    """Disk usage split by what uses it, in bytes."""

    images_bytes: int = 0
    oci_cache_bytes: int = 0
    overlays_bytes: int = 0
    volumes_bytes: int = 0
    extra_fields: dict = field(default_factory=dict)

    _FIELDS = ("images_bytes", "oci_cache_bytes", "overlays_bytes", "volumes_bytes")

    @classmethod
    def from_dict(cls, data: Any) -> "DiskBreakdown":
        data = _require_object(data, "disk breakdown")
        return cls(
            images_bytes=data.get("images_bytes") or 0,
            oci_cache_bytes=data.get("oci_cache_bytes") or 0,
            overlays_bytes=data.get("overlays_bytes") or 0,
            volumes_bytes=data.get("volumes_bytes") or 0,
            extra_fields=_extras(data, cls._FIELDS),
        )


@dataclass
class GPUProfile:
    """An available vGPU profile."""

    available: int = 0
    framebuffer_mb: int = 0
    name: str = ""
    extra_fields: dict = field(default_factory=dict)

    _FIELDS = ("available", "framebuffer_mb", "name")

    @classmethod
    def from_dict(cls, data: Any) -> "GPUProfile":
        data = _require_object(data, "GPU profile")
        return cls(
            available=data.get("available") or 0,
            framebuffer_mb=data.get("framebuffer_mb") or 0,
            name=data.get("name") or "",
            extra_fields=_extras(data, cls._FIELDS),
        )


class GPUResourceStatusMode(str, enum.Enum):
    """GPU mode: vgpu for SR-IOV/mdev, passthrough for whole GPUs."""

    VGPU = "vgpu"
    PASSTHROUGH = "passthrough"


def _parse_mode(value: Any) -> Union[GPUResourceStatusMode, str]:
    try:
        return GPUResourceStatusMode(value)
    except ValueError:
        return value if isinstance(value, str) else ""


@dataclass
class PassthroughDevice:
    """A physical GPU available for passthrough."""

    available: bool = False
    name: str = ""
    extra_fields: dict = field(default_factory=dict)

    _FIELDS = ("available", "name")

    @classmethod
    def from_dict(cls, data: Any) -> "PassthroughDevice":
        data = _require_object(data, "passthrough device")
        return cls(
            available=bool(data.get("available", False)),
            name=data.get("name") or "",
            extra_fields=_extras(data, cls._FIELDS),
        )


@dataclass
class GPUResourceStatus:
    """GPU slots and what they offer."""

    mode: Union[GPUResourceStatusMode, str] = ""
    total_slots: int = 0
    used_slots: int = 0
    devices: list[PassthroughDevice] = field(default_factory=list)
    profiles: list[GPUProfile] = field(default_factory=list)
    extra_fields: dict = field(default_factory=dict)

    _FIELDS = ("mode", "total_slots", "used_slots", "devices", "profiles")

    @classmethod
    def from_dict(cls, data: Any) -> "GPUResourceStatus":
        data = _require_object(data, "GPU status")
        return cls(
            mode=_parse_mode(data.get("mode")),
            total_slots=data.get("total_slots") or 0,
            used_slots=data.get("used_slots") or 0,
            devices=[PassthroughDevice.from_dict(item) for item in data.get("devices") or []],
            profiles=[GPUProfile.from_dict(item) for item in data.get("profiles") or []],
            extra_fields=_extras(data, cls._FIELDS),
        )


@dataclass
class ResourceAllocation:
    """Resources allocated to one instance."""

    cpu: int = 0
    disk_bytes: int = 0
    instance_id: str = ""
    instance_name: str = ""
    memory_bytes: int = 0
    network_download_bps: int = 0
    network_upload_bps: int = 0
    extra_fields: dict = field(default_factory=dict)

    _FIELDS = (
        "cpu",
        "disk_bytes",
        "instance_id",
        "instance_name",
        "memory_bytes",
        "network_download_bps",
        "network_upload_bps",
    )

    @classmethod
    def from_dict(cls, data: Any) -> "ResourceAllocation":
        data = _require_object(data, "resource allocation")
        return cls(
            cpu=data.get("cpu") or 0,
            disk_bytes=data.get("disk_bytes") or 0,
            instance_id=data.get("instance_id") or "",
            instance_name=data.get("instance_name") or "",
            memory_bytes=data.get("memory_bytes") or 0,
            network_download_bps=data.get("network_download_bps") or 0,
            network_upload_bps=data.get("network_upload_bps") or 0,
            extra_fields=_extras(data, cls._FIELDS),
        )


@dataclass
class ResourceStatus:
    """Capacity and allocation of one resource type."""

    allocated: int = 0
    available: int = 0
    capacity: int = 0
    effective_limit: int = 0
    oversub_ratio: float = 0.0
    type: str = ""
    source: str = ""
    extra_fields: dict = field(default_factory=dict)

    _FIELDS = (
        "allocated",
        "available",
        "capacity",
        "effective_limit",
        "oversub_ratio",
        "type",
        "source",
    )

    @classmethod
    def from_dict(cls, data: Any) -> "ResourceStatus":
        data = _require_object(data, "resource status")
        return cls(
            allocated=data.get("allocated") or 0,
            available=data.get("available") or 0,
            capacity=data.get("capacity") or 0,
            effective_limit=data.get("effective_limit") or 0,
            oversub_ratio=float(data.get("oversub_ratio") or 0.0),
            type=data.get("type") or "",
            source=data.get("source") or "",
            extra_fields=_extras(data, cls._FIELDS),
        )


@dataclass
class Resources:
    """Host capacity, allocation status and per-instance breakdown."""

    allocations: list[ResourceAllocation] = field(default_factory=list)
    cpu: ResourceStatus = field(default_factory=ResourceStatus)
    disk: ResourceStatus = field(default_factory=ResourceStatus)
    memory: ResourceStatus = field(default_factory=ResourceStatus)
    network: ResourceStatus = field(default_factory=ResourceStatus)
    disk_breakdown: DiskBreakdown = field(default_factory=DiskBreakdown)
    gpu: Optional[GPUResourceStatus] = None
    extra_fields: dict = field(default_factory=dict)

    _FIELDS = ("allocations", "cpu", "disk", "memory", "network", "disk_breakdown", "gpu")

    @classmethod
    def from_dict(cls, data: Any) -> "Resources":
        data = _require_object(data, "resources")
        gpu = data.get("gpu")
        return cls(
            allocations=[ResourceAllocation.from_dict(item) for item in data.get("allocations") or []],
            cpu=ResourceStatus.from_dict(data.get("cpu") or {}),
            disk=ResourceStatus.from_dict(data.get("disk") or {}),
            memory=ResourceStatus.from_dict(data.get("memory") or {}),
            network=ResourceStatus.from_dict(data.get("network") or {}),
            disk_breakdown=DiskBreakdown.from_dict(data.get("disk_breakdown") or {}),
            gpu=GPUResourceStatus.from_dict(gpu) if gpu is not None else None,
            extra_fields=_extras(data, cls._FIELDS),
        )


class ResourceService:
    """Queries host resources; the options given here apply to every call."""

    def __init__(self, *options: RequestOption) -> None:
        self.options = list(options)

    def get(self, *args: RequestOption) -> Resources:
        """Return current host capacity, allocations and per-instance breakdown."""
        data = execute_new_request("GET", "resources", None, *self.options, *args)
        return Resources.from_dict(data)


__all__ = [
    "DiskBreakdown",
    "GPUProfile",
    "GPUResourceStatus",
    "GPUResourceStatusMode",
    "PassthroughDevice",
    "ResourceAllocation",
    "ResourceService",
    "ResourceStatus",
    "Resources",
]