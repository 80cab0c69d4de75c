"""Tenant-scoped, traversal-safe backend path construction.

Resolved paths have the shape::

    <base_path>/<shard>/<account_id>/<app_id>/<sanitized logical path>

The shard is the first three two-character groups of the account id, so
``AB12CD34...`` lives under ``AB/12/CD/``. With randomly distributed GUIDs the
first two shard levels fill out at 256 entries each and the third holds only a
handful of accounts, even with a hundred million accounts.
"""

from __future__ import annotations

import posixpath
import re

from mantabox.core.errors import PathRejectedError
from mantabox.storage.gateway import Tenant

SHARD_DEPTH = 3
SHARD_WIDTH = 2
STAGING_DIR = ".uploads"

_TRAVERSAL_PREFIX = re.compile(r"^(?:\.\.(?:[/\\]|$))+")


def shard_prefix(account_id: str) -> list[str]:
    """Split the first six characters of ``account_id`` into pairs.

    Short ids are used as-is, without padding.
    """
    head = account_id[: SHARD_DEPTH * SHARD_WIDTH]
    return [head[i : i + SHARD_WIDTH] for i in range(0, len(head), SHARD_WIDTH)]


def sanitize(logical_path: str) -> str:
    """Normalize ``logical_path`` and strip anything that climbs above it.

    Returns a relative path with no ``.`` or ``..`` segments; the tenant root
    is the empty string.
    """
    current = (logical_path or "").replace("\\", "/")
    while True:
        normalized = posixpath.normpath(current).lstrip("/")
        stripped = _TRAVERSAL_PREFIX.sub("", normalized)
        if stripped == current:
            break
        current = stripped
    return "" if current == "." else current


def is_root(logical_path: str) -> bool:
    return sanitize(logical_path) == ""


def _join(*segments: str) -> str:
    parts = [segment.strip("/") for segment in segments if segment and segment.strip("/")]
    head = "/" if segments and segments[0].startswith("/") else ""
    return head + "/".join(parts)


class PathResolver:
    """Maps (tenant, logical path) to a resolved backend path. Pure, no I/O."""

    def __init__(self, base_path: str):
        self.base_path = base_path

    def tenant_root(self, tenant: Tenant) -> str:
        for identifier in (tenant.account_id, tenant.app_id):
            if identifier in ("", ".", "..") or "/" in identifier or "\\" in identifier:
                raise PathRejectedError(f"Invalid tenant identifier: {identifier!r}")
        return _join(
            self.base_path,
            *shard_prefix(tenant.account_id),
            tenant.account_id,
            tenant.app_id,
        )

    def resolve(self, tenant: Tenant, logical_path: str) -> str:
        root = self.tenant_root(tenant)
        resolved = _join(root, sanitize(logical_path))
        if resolved != root and not resolved.startswith(root + "/"):
            raise PathRejectedError(f"Path escapes tenant subtree: {logical_path!r}", path=resolved)
        return resolved

    def parent(self, tenant: Tenant, logical_path: str) -> str:
        return posixpath.dirname(self.resolve(tenant, logical_path))

    def staging_path(self, upload_id: str) -> str:
        return _join(self.base_path, STAGING_DIR, upload_id)
