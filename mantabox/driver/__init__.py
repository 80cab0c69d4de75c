"""Tenant-scoped storage driver."""

from mantabox.driver.entries import Entry, EntryKind, to_entry
from mantabox.driver.paths import PathResolver
from mantabox.driver.storage_driver import StorageDriver
from mantabox.storage.gateway import Tenant

__all__ = ["Entry", "EntryKind", "to_entry", "PathResolver", "StorageDriver", "Tenant"]
