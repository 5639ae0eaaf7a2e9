"""
Supply batch records.

Immutable value types for every per-token sub-record the registry keeps, plus
the fixed-capacity log used for version history (and, when a capacity is
configured, for licenses and collaborators).

Records are frozen so that query results handed to callers can never alias
and mutate registry state; updates build a new record with
`dataclasses.replace`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Generic, Iterable, Iterator, List, Optional, Tuple, TypeVar


class StatusLabel(str, Enum):
    """Label written to the status tracker by each mutating operation."""
    MINTED = "minted"
    TRANSFERRED = "transferred"
    METADATA_UPDATED = "metadata-updated"
    VERSION_ADDED = "version-added"
    LICENSE_GRANTED = "license-granted"
    LICENSE_REVOKED = "license-revoked"
    COLLABORATOR_ADDED = "collaborator-added"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


@dataclass(frozen=True)
class TokenMetadata:
    """Descriptive record of one supply batch."""
    uri: str
    supply_type: str
    quantity: int
    expiration: Optional[int]
    description: str
    tags: Tuple[str, ...] = ()
    locked: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["tags"] = list(self.tags)
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenMetadata":
        return cls(
            uri=data["uri"],
            supply_type=data["supply_type"],
            quantity=data["quantity"],
            expiration=data.get("expiration"),
            description=data.get("description", ""),
            tags=tuple(data.get("tags") or ()),
            locked=bool(data.get("locked", False)),
        )


@dataclass(frozen=True)
class TokenVersion:
    """One metadata revision in a token's version history."""
    version: int
    updated_uri: str
    notes: str
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenVersion":
        return cls(
            version=data["version"],
            updated_uri=data["updated_uri"],
            notes=data.get("notes", ""),
            timestamp=data["timestamp"],
        )


@dataclass(frozen=True)
class TokenStatus:
    """Last action taken on a token and when."""
    status: str
    last_updated: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenStatus":
        return cls(status=data["status"], last_updated=data["last_updated"])


@dataclass(frozen=True)
class TokenLicense:
    """A time-bound usage grant.

    `active` is set at grant time and never cleared; revocation removes the
    entry instead.
    """
    licensee: str
    expiry: int
    terms: str
    active: bool = True

    def is_active_at(self, height: int) -> bool:
        return self.active and self.expiry >= height

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenLicense":
        return cls(
            licensee=data["licensee"],
            expiry=data["expiry"],
            terms=data.get("terms", ""),
            active=bool(data.get("active", True)),
        )


@dataclass(frozen=True)
class Collaborator:
    """An informational delegation record."""
    collaborator: str
    role: str
    permissions: Tuple[str, ...]
    added_at: int

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["permissions"] = list(self.permissions)
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Collaborator":
        return cls(
            collaborator=data["collaborator"],
            role=data.get("role", ""),
            permissions=tuple(data.get("permissions") or ()),
            added_at=data["added_at"],
        )


# =============================================================================
# FIXED-CAPACITY LOG
# =============================================================================

class CapacityExceeded(Exception):
    """Raised when appending to a full BoundedLog."""

    def __init__(self, capacity: int):
        self.capacity = capacity
        super().__init__(f"log is full (capacity {capacity})")


T = TypeVar("T")


class BoundedLog(Generic[T]):
    """Append-only ordered sequence with an optional hard capacity.

    A full log rejects further appends; nothing is ever evicted. A capacity
    of None means unbounded.
    """

    __slots__ = ("_items", "_capacity")

    def __init__(self, capacity: Optional[int] = None, items: Iterable[T] = ()):
        self._capacity = capacity
        self._items: List[T] = []
        for item in items:
            self.append(item)

    @property
    def capacity(self) -> Optional[int]:
        return self._capacity

    @property
    def is_full(self) -> bool:
        return self._capacity is not None and len(self._items) >= self._capacity

    def append(self, item: T) -> None:
        if self.is_full:
            raise CapacityExceeded(self._capacity)
        self._items.append(item)

    def remove_where(self, predicate) -> int:
        """Drop every entry matching predicate; return how many were removed."""
        kept = [item for item in self._items if not predicate(item)]
        removed = len(self._items) - len(kept)
        self._items = kept
        return removed

    def copy(self) -> "BoundedLog[T]":
        clone: BoundedLog[T] = BoundedLog(self._capacity)
        clone._items = list(self._items)
        return clone

    def as_tuple(self) -> Tuple[T, ...]:
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))

    def __getitem__(self, index: int) -> T:
        return self._items[index]

    def __repr__(self) -> str:
        return f"BoundedLog(capacity={self._capacity}, items={self._items!r})"
