"""
Data models for the cleanup pipeline.

A Resource is a single immutable record tagged by its kind. Kind-specific
fields live in a details payload whose type must match the kind, so every
component dispatches on ``resource.kind`` rather than on a class hierarchy.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class ResourceKind(Enum):
    """Kinds of Docker resources the pipeline knows how to clean."""

    CONTAINER = "container"
    IMAGE = "image"
    VOLUME = "volume"
    NETWORK = "network"


class ContainerStatus(Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    EXITED = "exited"


class RunMode(Enum):
    """Whether a run previews removals or performs them."""

    PREVIEW = "dry-run"
    DESTRUCTIVE = "cleanup"


class RunState(Enum):
    """Orchestrator states for a single run."""

    IDLE = "idle"
    CONNECTING = "connecting"
    SCANNING = "scanning"
    FILTERING = "filtering"
    SIZING = "sizing"
    BACKING_UP = "backing_up"
    REMOVING = "removing"
    VERIFYING = "verifying"
    REPORTING = "reporting"
    DONE = "done"
    FAILED = "failed"


class ErrorType(Enum):
    CONNECTIVITY = "connectivity"
    BACKUP_FAILURE = "backup_failure"
    RESOURCE_IN_USE = "resource_in_use"
    RESOURCE_NOT_FOUND = "resource_not_found"
    REMOVAL_FAILURE = "removal_failure"
    SIZE_ESTIMATION = "size_estimation"
    VERIFICATION_MISMATCH = "verification_mismatch"
    UNKNOWN = "unknown"


def _parse_time(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ContainerDetails:
    status: ContainerStatus
    image_id: str
    mounted_volume_names: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "image_id": self.image_id,
            "mounted_volume_names": list(self.mounted_volume_names),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContainerDetails":
        return cls(
            status=ContainerStatus(data["status"]),
            image_id=data.get("image_id", ""),
            mounted_volume_names=tuple(data.get("mounted_volume_names", ())),
        )


@dataclass(frozen=True)
class ImageDetails:
    repository: str
    tag: str
    # Derived from the live container list on every scan
    used_by_container_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "repository": self.repository,
            "tag": self.tag,
            "used_by_container_ids": list(self.used_by_container_ids),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImageDetails":
        return cls(
            repository=data.get("repository", ""),
            tag=data.get("tag", ""),
            used_by_container_ids=tuple(data.get("used_by_container_ids", ())),
        )


@dataclass(frozen=True)
class VolumeDetails:
    mount_point: str
    # Derived from the live container list on every scan
    used_by_container_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "mount_point": self.mount_point,
            "used_by_container_ids": list(self.used_by_container_ids),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VolumeDetails":
        return cls(
            mount_point=data.get("mount_point", ""),
            used_by_container_ids=tuple(data.get("used_by_container_ids", ())),
        )


@dataclass(frozen=True)
class NetworkDetails:
    driver: str
    connected_container_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "driver": self.driver,
            "connected_container_ids": list(self.connected_container_ids),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NetworkDetails":
        return cls(
            driver=data.get("driver", ""),
            connected_container_ids=tuple(data.get("connected_container_ids", ())),
        )


DETAILS_TYPES = {
    ResourceKind.CONTAINER: ContainerDetails,
    ResourceKind.IMAGE: ImageDetails,
    ResourceKind.VOLUME: VolumeDetails,
    ResourceKind.NETWORK: NetworkDetails,
}


@dataclass(frozen=True)
class Resource:
    """
    A Docker resource found on the host.

    Args:
        id: Daemon identifier (volume name for volumes).
        name: Human-readable name.
        kind: Discriminant selecting the details payload.
        details: Kind-specific fields.
        size_bytes: Reclaimable size in bytes.
        created_at: Creation time.
        last_used_at: Last time the resource was used, when known.
        tags: Label keys attached to the resource.
    """

    id: str
    name: str
    kind: ResourceKind
    details: ContainerDetails | ImageDetails | VolumeDetails | NetworkDetails
    size_bytes: int = 0
    created_at: datetime = field(default_factory=utcnow)
    last_used_at: datetime | None = None
    tags: frozenset[str] = frozenset()

    def __post_init__(self):
        expected = DETAILS_TYPES[self.kind]
        if not isinstance(self.details, expected):
            raise TypeError(
                f"{self.kind.value} resource requires {expected.__name__}, "
                f"got {type(self.details).__name__}"
            )
        if self.size_bytes < 0:
            raise ValueError(f"size_bytes must be non-negative, got {self.size_bytes}")
        if not isinstance(self.tags, frozenset):
            object.__setattr__(self, "tags", frozenset(self.tags))

    def with_size(self, size_bytes: int) -> "Resource":
        return replace(self, size_bytes=max(0, int(size_bytes)))

    def with_details(self, details) -> "Resource":
        return replace(self, details=details)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "size_bytes": self.size_bytes,
            "created_at": self.created_at.isoformat(),
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
            "tags": sorted(self.tags),
            "details": self.details.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Resource":
        kind = ResourceKind(data["kind"])
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            kind=kind,
            details=DETAILS_TYPES[kind].from_dict(data.get("details", {})),
            size_bytes=int(data.get("size_bytes", 0)),
            created_at=_parse_time(data.get("created_at")) or utcnow(),
            last_used_at=_parse_time(data.get("last_used_at")),
            tags=frozenset(data.get("tags", ())),
        )


@dataclass(frozen=True)
class ErrorRecord:
    """A failure recorded during a run."""

    type: ErrorType
    message: str
    resource: Resource | None = None
    timestamp: datetime = field(default_factory=utcnow)
    recoverable: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "message": self.message,
            "resource": self.resource.to_dict() if self.resource else None,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
        }


@dataclass
class CleanupOutcome:
    """
    Per-resource results of a removal pass.

    Every input resource lands in exactly one of removed/skipped, or produces
    exactly one entry in errors.
    """

    removed: list[Resource] = field(default_factory=list)
    skipped: list[Resource] = field(default_factory=list)
    errors: list[ErrorRecord] = field(default_factory=list)
    skip_reasons: dict[str, str] = field(default_factory=dict)

    @property
    def processed_count(self) -> int:
        return len(self.removed) + len(self.skipped) + len(self.errors)

    def to_dict(self) -> dict[str, Any]:
        return _outcome_dict(self)

    def freeze(self) -> "ReportDetails":
        """Snapshot the outcome so later appends do not leak into a report."""
        return ReportDetails(
            removed=tuple(self.removed),
            skipped=tuple(self.skipped),
            errors=tuple(self.errors),
            skip_reasons=MappingProxyType(dict(self.skip_reasons)),
        )


@dataclass(frozen=True)
class ReportDetails:
    """Read-only view of a CleanupOutcome, as carried by a Report."""

    removed: tuple[Resource, ...] = ()
    skipped: tuple[Resource, ...] = ()
    errors: tuple[ErrorRecord, ...] = ()
    skip_reasons: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def processed_count(self) -> int:
        return len(self.removed) + len(self.skipped) + len(self.errors)

    def to_dict(self) -> dict[str, Any]:
        return _outcome_dict(self)


def _outcome_dict(outcome) -> dict[str, Any]:
    return {
        "removed": [r.to_dict() for r in outcome.removed],
        "skipped": [
            {**r.to_dict(), "reason": outcome.skip_reasons.get(r.id, "")} for r in outcome.skipped
        ],
        "errors": [e.to_dict() for e in outcome.errors],
    }


@dataclass(frozen=True)
class BackupMetadata:
    host: str
    total_size_bytes: int
    resource_count: int


@dataclass(frozen=True)
class Backup:
    timestamp: datetime
    resources: tuple[Resource, ...]
    metadata: BackupMetadata

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "resources": [r.to_dict() for r in self.resources],
            "metadata": {
                "host": self.metadata.host,
                "total_size_bytes": self.metadata.total_size_bytes,
                "resource_count": self.metadata.resource_count,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Backup":
        meta = data["metadata"]
        resources = tuple(Resource.from_dict(r) for r in data["resources"])
        return cls(
            timestamp=_parse_time(data["timestamp"]),
            resources=resources,
            metadata=BackupMetadata(
                host=meta.get("host", "unknown"),
                total_size_bytes=int(meta["total_size_bytes"]),
                resource_count=int(meta["resource_count"]),
            ),
        )


@dataclass(frozen=True)
class BackupResult:
    success: bool
    path: str
    error: str | None = None


@dataclass(frozen=True)
class ReportSummary:
    scanned: int
    removed_count: int
    space_freed_bytes: int
    duration_ms: int


@dataclass(frozen=True)
class Report:
    """Immutable record of a completed orchestration pass."""

    timestamp: datetime
    mode: RunMode
    summary: ReportSummary
    details: ReportDetails

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "mode": self.mode.value,
            "summary": {
                "scanned": self.summary.scanned,
                "removed_count": self.summary.removed_count,
                "space_freed_bytes": self.summary.space_freed_bytes,
                "duration_ms": self.summary.duration_ms,
            },
            "details": self.details.to_dict(),
        }


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class NodeStatus:
    status: str
    uptime: int
    cpu: float
    memory_used: int
    memory_total: int
