"""
ObjectStore - the backing store for Run, BuildRun and Build objects.

The store is the only shared mutable resource. Every call is a short I/O
operation; callers never hold locks across calls. Concurrency is optimistic:
each update carries the resourceVersion last read, and a mismatch raises
ConflictError so the caller re-reads and recomputes.

Semantics:
- create(): assigns uid, resourceVersion, generation=1, creationTimestamp;
  an existing identity raises AlreadyExistsError
- update(): replaces metadata + spec; generation bumps when spec changes;
  status is left untouched
- update_status(): replaces status only; generation never changes
- delete(): marks deletionTimestamp while finalizers remain, purges otherwise;
  an update that clears the last finalizer of a deleting object purges it
- watch(): handlers receive (event_type, obj) after each committed mutation

Storage backends:
- InMemoryObjectStore (tests, embedded use)
- FileObjectStore (development; one JSON document per object)
"""

import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from shiprun.errors import AlreadyExistsError, ConflictError, TransientError
from shiprun.schemas import Build, BuildRun, Run
from shiprun.schemas.meta import format_time

logger = logging.getLogger(__name__)


ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"

KINDS: dict[str, Any] = {
    Run.KIND: Run,
    BuildRun.KIND: BuildRun,
    Build.KIND: Build,
}

WatchHandler = Callable[[str, Any], None]
Key = tuple[str, str, str]


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _decode(doc: dict[str, Any]) -> Any:
    kind = doc.get("kind")
    if kind not in KINDS:
        raise ValueError(f"Unknown kind: {kind}")
    return KINDS[kind].from_dict(doc)


class ObjectStore(ABC):
    """
    Abstract base class for object storage.

    Implementations must provide identity-keyed get/list/create/update/delete
    with optimistic concurrency and change notification.
    """

    @abstractmethod
    def get(self, kind: str, namespace: str, name: str) -> Optional[Any]:
        """
        Retrieve an object.

        Returns:
            A fresh copy of the object, or None if it does not exist

        Raises:
            TransientError: On I/O failure
        """
        pass

    @abstractmethod
    def list(self, kind: str, namespace: Optional[str] = None) -> list[Any]:
        """List objects of a kind, optionally within one namespace."""
        pass

    @abstractmethod
    def create(self, obj: Any) -> Any:
        """
        Create an object.

        Returns:
            The stored object with server-assigned metadata

        Raises:
            AlreadyExistsError: If an object with the same identity exists
            TransientError: On I/O failure
        """
        pass

    @abstractmethod
    def update(self, obj: Any) -> Any:
        """
        Update metadata and spec of an object.

        Raises:
            ConflictError: On resourceVersion mismatch or if the object vanished
            TransientError: On I/O failure
        """
        pass

    @abstractmethod
    def update_status(self, obj: Any) -> Any:
        """
        Update the status block of an object.

        Raises:
            ConflictError: On resourceVersion mismatch or if the object vanished
            TransientError: On I/O failure
        """
        pass

    @abstractmethod
    def delete(self, kind: str, namespace: str, name: str) -> None:
        """Delete an object (deferred while finalizers remain)."""
        pass

    @abstractmethod
    def watch(self, handler: WatchHandler) -> Callable[[], None]:
        """
        Register a change handler.

        Returns:
            A callable that unregisters the handler
        """
        pass


class DocumentStore(ObjectStore):
    """
    Store semantics over a raw document backend.

    Subclasses provide _load/_save/_remove/_keys; this class implements
    identity, versioning, finalizers and watch notification on top.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or _utcnow
        self._lock = threading.RLock()
        self._handlers: list[WatchHandler] = []

    # -- raw backend ------------------------------------------------------

    @abstractmethod
    def _load(self, key: Key) -> Optional[dict[str, Any]]:
        pass

    @abstractmethod
    def _save(self, key: Key, doc: dict[str, Any]) -> None:
        pass

    @abstractmethod
    def _remove(self, key: Key) -> None:
        pass

    @abstractmethod
    def _keys(self, kind: str, namespace: Optional[str]) -> Iterator[Key]:
        pass

    # -- ObjectStore ------------------------------------------------------

    def get(self, kind: str, namespace: str, name: str) -> Optional[Any]:
        with self._lock:
            doc = self._load((kind, namespace, name))
        return _decode(doc) if doc is not None else None

    def list(self, kind: str, namespace: Optional[str] = None) -> list[Any]:
        with self._lock:
            docs = [self._load(key) for key in sorted(self._keys(kind, namespace))]
        return [_decode(doc) for doc in docs if doc is not None]

    def create(self, obj: Any) -> Any:
        meta = obj.metadata
        key = (obj.KIND, meta.namespace, meta.name)
        with self._lock:
            if self._load(key) is not None:
                raise AlreadyExistsError(*key)
            doc = obj.to_dict()
            doc["metadata"].update({
                "uid": str(uuid.uuid4()),
                "resourceVersion": "1",
                "generation": 1,
                "creationTimestamp": format_time(self._clock()),
            })
            doc["metadata"].pop("deletionTimestamp", None)
            self._save(key, doc)
        created = _decode(doc)
        logger.debug("created %s %s", obj.KIND, meta.key)
        self._notify(ADDED, created)
        return created

    def update(self, obj: Any) -> Any:
        meta = obj.metadata
        key = (obj.KIND, meta.namespace, meta.name)
        purged = False
        with self._lock:
            stored = self._checked_load(key, meta.resource_version)
            incoming = obj.to_dict()
            doc = dict(stored)
            new_meta = dict(incoming["metadata"])
            for immutable in ("uid", "creationTimestamp", "deletionTimestamp", "generation"):
                if immutable in stored["metadata"]:
                    new_meta[immutable] = stored["metadata"][immutable]
                else:
                    new_meta.pop(immutable, None)
            if incoming.get("spec") != stored.get("spec"):
                new_meta["generation"] = stored["metadata"].get("generation", 1) + 1
            new_meta["resourceVersion"] = self._next_version(stored)
            doc["metadata"] = new_meta
            doc["spec"] = incoming.get("spec")

            if new_meta.get("deletionTimestamp") and not new_meta.get("finalizers"):
                self._remove(key)
                purged = True
            else:
                self._save(key, doc)
        updated = _decode(doc)
        self._notify(DELETED if purged else MODIFIED, updated)
        return updated

    def update_status(self, obj: Any) -> Any:
        meta = obj.metadata
        key = (obj.KIND, meta.namespace, meta.name)
        with self._lock:
            stored = self._checked_load(key, meta.resource_version)
            doc = dict(stored)
            doc["metadata"] = dict(stored["metadata"])
            doc["metadata"]["resourceVersion"] = self._next_version(stored)
            status = obj.to_dict().get("status")
            if status:
                doc["status"] = status
            else:
                doc.pop("status", None)
            self._save(key, doc)
        updated = _decode(doc)
        self._notify(MODIFIED, updated)
        return updated

    def delete(self, kind: str, namespace: str, name: str) -> None:
        key = (kind, namespace, name)
        event = None
        with self._lock:
            stored = self._load(key)
            if stored is None:
                return
            doc = dict(stored)
            doc["metadata"] = dict(stored["metadata"])
            if doc["metadata"].get("finalizers"):
                if not doc["metadata"].get("deletionTimestamp"):
                    doc["metadata"]["deletionTimestamp"] = format_time(self._clock())
                    doc["metadata"]["resourceVersion"] = self._next_version(stored)
                    self._save(key, doc)
                    event = MODIFIED
            else:
                self._remove(key)
                event = DELETED
        if event is not None:
            logger.debug("delete %s %s/%s -> %s", kind, namespace, name, event)
            self._notify(event, _decode(doc))

    def watch(self, handler: WatchHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return unsubscribe

    # -- helpers ----------------------------------------------------------

    def _checked_load(self, key: Key, resource_version: str) -> dict[str, Any]:
        stored = self._load(key)
        if stored is None:
            raise ConflictError(f"{key[0]} {key[1]}/{key[2]} no longer exists")
        current = stored["metadata"].get("resourceVersion", "")
        if resource_version != current:
            raise ConflictError(
                f"{key[0]} {key[1]}/{key[2]} has been modified: "
                f"resourceVersion {resource_version!r} != {current!r}"
            )
        return stored

    @staticmethod
    def _next_version(stored: dict[str, Any]) -> str:
        return str(int(stored["metadata"].get("resourceVersion") or 0) + 1)

    def _notify(self, event: str, obj: Any) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            handler(event, obj)


class InMemoryObjectStore(DocumentStore):
    """
    In-memory implementation of ObjectStore for testing.

    All data is lost when the instance is garbage collected.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        super().__init__(clock)
        self._docs: dict[Key, dict[str, Any]] = {}

    def _load(self, key: Key) -> Optional[dict[str, Any]]:
        doc = self._docs.get(key)
        return json.loads(json.dumps(doc)) if doc is not None else None

    def _save(self, key: Key, doc: dict[str, Any]) -> None:
        self._docs[key] = json.loads(json.dumps(doc))

    def _remove(self, key: Key) -> None:
        self._docs.pop(key, None)

    def _keys(self, kind: str, namespace: Optional[str]) -> Iterator[Key]:
        for key in list(self._docs):
            if key[0] == kind and (namespace is None or key[1] == namespace):
                yield key

    def clear(self) -> None:
        """Clear all stored objects (for testing)."""
        with self._lock:
            self._docs.clear()


class FileObjectStore(DocumentStore):
    """
    File-based implementation of ObjectStore for development.

    Stores objects as JSON files in a directory tree:
        store_dir/
            {kind}/
                {namespace}/
                    {name}.json

    Filesystem failures surface as TransientError.
    """

    def __init__(self, store_dir: Path | str, clock: Optional[Callable[[], datetime]] = None):
        super().__init__(clock)
        self._store_dir = Path(store_dir).expanduser()
        try:
            self._store_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TransientError(f"cannot create store directory {self._store_dir}: {e}") from e

    @property
    def store_dir(self) -> Path:
        return self._store_dir

    def _path(self, key: Key) -> Path:
        kind, namespace, name = key
        return self._store_dir / kind / namespace / f"{name}.json"

    def _load(self, key: Key) -> Optional[dict[str, Any]]:
        path = self._path(key)
        try:
            with open(path) as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise TransientError(f"cannot read {path}: {e}") from e

    def _save(self, key: Key, doc: dict[str, Any]) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w") as f:
                json.dump(doc, f, indent=2, sort_keys=True)
            tmp_path.replace(path)
        except OSError as e:
            raise TransientError(f"cannot write {path}: {e}") from e

    def _remove(self, key: Key) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise TransientError(f"cannot remove {path}: {e}") from e

    def _keys(self, kind: str, namespace: Optional[str]) -> Iterator[Key]:
        kind_dir = self._store_dir / kind
        if not kind_dir.exists():
            return
        namespaces = [namespace] if namespace is not None else [
            p.name for p in kind_dir.iterdir() if p.is_dir()
        ]
        for ns in namespaces:
            ns_dir = kind_dir / ns
            if not ns_dir.exists():
                continue
            for path in ns_dir.glob("*.json"):
                yield (kind, ns, path.stem)
