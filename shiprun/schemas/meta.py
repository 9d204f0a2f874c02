"""
Object metadata shared by every stored kind.

ObjectMeta carries identity (namespace, name, uid), optimistic-concurrency
state (resourceVersion, generation), lifecycle markers (creationTimestamp,
deletionTimestamp, finalizers) and ownership (ownerReferences).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def format_time(value: Optional[datetime]) -> Optional[str]:
    """Render a timestamp as RFC 3339 UTC, or None."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_time(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp ("Z" suffix allowed), or None."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class OwnerReference:
    """
    Points from a dependent object to the object that owns it.

    Attributes:
        api_version: Owner apiVersion (e.g. "tekton.dev/v1alpha1")
        kind: Owner kind (e.g. "Run")
        name: Owner name (same namespace as the dependent)
        uid: Owner uid, so a recreated owner with the same name is not matched
        controller: True when the owner is the managing controller
        block_owner_deletion: Owner deletion waits for this dependent
    """
    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = True
    block_owner_deletion: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": self.controller,
            "blockOwnerDeletion": self.block_owner_deletion,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OwnerReference":
        return cls(
            api_version=data["apiVersion"],
            kind=data["kind"],
            name=data["name"],
            uid=data.get("uid", ""),
            controller=data.get("controller", False),
            block_owner_deletion=data.get("blockOwnerDeletion", False),
        )


@dataclass
class ObjectMeta:
    """
    Identity and lifecycle metadata for a stored object.

    namespace/name is the identity key. uid, resource_version, generation and
    creation_timestamp are assigned by the store on create; callers only set
    them when round-tripping an object they previously read.
    """
    name: str
    namespace: str = "default"
    uid: str = ""
    generation: int = 0
    resource_version: str = ""
    creation_timestamp: Optional[datetime] = None
    deletion_timestamp: Optional[datetime] = None
    finalizers: list[str] = field(default_factory=list)
    owner_references: list[OwnerReference] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def key(self) -> str:
        """The work-queue key for this object."""
        return f"{self.namespace}/{self.name}"

    def controller_ref(self) -> Optional[OwnerReference]:
        """Return the owner reference marked as controller, if any."""
        for ref in self.owner_references:
            if ref.controller:
                return ref
        return None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "namespace": self.namespace,
        }
        if self.uid:
            result["uid"] = self.uid
        if self.generation:
            result["generation"] = self.generation
        if self.resource_version:
            result["resourceVersion"] = self.resource_version
        if self.creation_timestamp is not None:
            result["creationTimestamp"] = format_time(self.creation_timestamp)
        if self.deletion_timestamp is not None:
            result["deletionTimestamp"] = format_time(self.deletion_timestamp)
        if self.finalizers:
            result["finalizers"] = list(self.finalizers)
        if self.owner_references:
            result["ownerReferences"] = [r.to_dict() for r in self.owner_references]
        if self.labels:
            result["labels"] = dict(self.labels)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ObjectMeta":
        return cls(
            name=data["name"],
            namespace=data.get("namespace", "default"),
            uid=data.get("uid", ""),
            generation=data.get("generation", 0),
            resource_version=str(data.get("resourceVersion", "")),
            creation_timestamp=parse_time(data.get("creationTimestamp")),
            deletion_timestamp=parse_time(data.get("deletionTimestamp")),
            finalizers=list(data.get("finalizers", [])),
            owner_references=[
                OwnerReference.from_dict(r) for r in data.get("ownerReferences", [])
            ],
            labels=dict(data.get("labels", {})),
        )
