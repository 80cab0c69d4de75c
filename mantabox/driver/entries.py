"""Dropbox-style entries built from backend descriptors."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from mantabox.storage.gateway import Descriptor, DescriptorType


class EntryKind(str, Enum):
    FILE = "file"
    FOLDER = "folder"


@dataclass(frozen=True)
class Entry:
    name: str
    kind: EntryKind
    size: int = 0

    def to_dict(self) -> dict:
        payload = {".tag": self.kind.value, "name": self.name}
        if self.kind is EntryKind.FILE:
            payload["size"] = self.size
        return payload


def to_entry(descriptor: Descriptor) -> Entry:
    # etag, mtime and parent are available here but not surfaced yet
    if descriptor.type == DescriptorType.OBJECT:
        return Entry(name=descriptor.name, kind=EntryKind.FILE, size=descriptor.size)
    return Entry(name=descriptor.name, kind=EntryKind.FOLDER)
