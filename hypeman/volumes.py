"""Volume management: create, list, inspect and delete volumes."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from hypeman.options import with_header
from hypeman.requestconfig import RequestOption, execute_new_request

_FRACTION = re.compile(r"\.(\d+)")


def _require_object(data: Any, kind: str) -> dict:
    if not isinstance(data, dict):
        raise TypeError(f"expected a JSON object for {kind}, got {type(data).__name__}")
    return data


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if not isinstance(value, str):
        raise TypeError(f"expected an RFC3339 string, got {type(value).__name__}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + (m.group(1) + "000000")[:6], text, count=1)
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"invalid RFC3339 timestamp {value!r}") from exc


@dataclass
class VolumeAttachment:
    """Where a volume is attached."""

    instance_id: str = ""
    mount_path: str = ""
    readonly: bool = False
    extra_fields: dict = field(default_factory=dict)

    _FIELDS = ("instance_id", "mount_path", "readonly")

    @classmethod
    def from_dict(cls, data: Any) -> "VolumeAttachment":
        data = _require_object(data, "volume attachment")
        return cls(
            instance_id=data.get("instance_id") or "",
            mount_path=data.get("mount_path") or "",
            readonly=bool(data.get("readonly", False)),
            extra_fields={k: v for k, v in data.items() if k not in cls._FIELDS},
        )


@dataclass
class Volume:
    """A persistent volume."""

    id: str = ""
    created_at: Optional[datetime] = None
    name: str = ""
    size_gb: int = 0
    attachments: list[VolumeAttachment] = field(default_factory=list)
    extra_fields: dict = field(default_factory=dict)

    _FIELDS = ("id", "created_at", "name", "size_gb", "attachments")

    @classmethod
    def from_dict(cls, data: Any) -> "Volume":
        data = _require_object(data, "volume")
        return cls(
            id=data.get("id") or "",
            created_at=_parse_timestamp(data.get("created_at")),
            name=data.get("name") or "",
            size_gb=data.get("size_gb") or 0,
            attachments=[VolumeAttachment.from_dict(item) for item in data.get("attachments") or []],
            extra_fields={k: v for k, v in data.items() if k not in cls._FIELDS},
        )


@dataclass
class VolumeNewParams:
    """Parameters for creating an empty volume."""

    name: str
    size_gb: int
    id: Optional[str] = None

    def to_dict(self) -> dict:
        """The JSON body; the id is left out when not given."""
        body: dict = {"name": self.name, "size_gb": self.size_gb}
        if self.id is not None:
            body["id"] = self.id
        return body


class VolumeService:
    """Volume operations; the options given here apply to every call."""

    def __init__(self, *options: RequestOption) -> None:
        self.options = list(options)

    def new(self, params: VolumeNewParams, *args: RequestOption) -> Volume:
        """Create a volume."""
        data = execute_new_request("POST", "volumes", params, *self.options, *args)
        return Volume.from_dict(data)

    def list(self, *args: RequestOption) -> list[Volume]:
        """List all volumes."""
        data = execute_new_request("GET", "volumes", None, *self.options, *args)
        if data is None:
            return []
        if not isinstance(data, list):
            raise TypeError(f"expected a JSON array of volumes, got {type(data).__name__}")
        return [Volume.from_dict(item) for item in data]

    def delete(self, id: str, *args: RequestOption) -> None:
        """Delete a volume."""
        if not id:
            raise ValueError("missing required id parameter")
        execute_new_request(
            "DELETE", f"volumes/{id}", None, with_header("Accept", "*/*"), *self.options, *args
        )

    def get(self, id: str, *args: RequestOption) -> Volume:
        """Return the details of one volume."""
        if not id:
            raise ValueError("missing required id parameter")
        data = execute_new_request("GET", f"volumes/{id}", None, *self.options, *args)
        return Volume.from_dict(data)


__all__ = ["Volume", "VolumeAttachment", "VolumeNewParams", "VolumeService"]