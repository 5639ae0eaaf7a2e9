"""
ReliefChain Supply Registry

Tracks the lifecycle of unique supply-batch tokens: minting, delegated
transfer, versioned metadata, time-bound licensing, collaborator delegation,
locking and retirement.

    ┌──────────────────────────────────────────────────────────────┐
    │                    mutating call (caller, ...)               │
    └──────────────────────────────┬───────────────────────────────┘
                                   │ Ledger.execute
    ┌──────────────────────────────▼───────────────────────────────┐
    │  Admin gate:  paused?  │  admin-only?  │  verified (mint)?   │
    ├──────────────────────────────────────────────────────────────┤
    │  Operation checks (first failure wins) and table writes      │
    │  owners │ metadata │ versions │ statuses │ licenses │ collabs │
    ├──────────────────────────────────────────────────────────────┤
    │  Status post-step: statuses[id] = (label, now)               │
    └──────────────────────────────────────────────────────────────┘

Every mutating method takes the authenticated caller first and returns a
`Response`. A failed precondition raises `RegistryFault` inside the call; the
ledger rolls back through the checkpoint opened before the call so no partial
effect survives. Queries bypass the gate and return None for unknown token ids.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from functools import wraps
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Set, Tuple, TypeVar

from reliefchain.config import ConfigValue, ReliefChainConfig, get_config
from reliefchain.errors import ErrorCode, RegistryFault, Response, require
from reliefchain.hardening import Validators
from reliefchain.ledger import Ledger
from reliefchain.observability import RegistryLayer, get_logger
from reliefchain.records import (
    BoundedLog,
    CapacityExceeded,
    Collaborator,
    StatusLabel,
    TokenLicense,
    TokenMetadata,
    TokenStatus,
    TokenVersion,
)
from reliefchain.verification import VerificationCapability

logger = get_logger("registry", RegistryLayer.REGISTRY)

F = TypeVar("F", bound=Callable[..., Any])


# =============================================================================
# STATE
# =============================================================================

_ABSENT = object()


@dataclass
class Checkpoint:
    """Undo journal for one ledger call.

    Holds the registry-wide singleton as it was when the call began and the
    prior value of every (table, token id) entry written since.
    """
    last_token_id: int
    paused: bool
    verifier: Optional[VerificationCapability]
    journal: List[Tuple[str, int, Any]] = field(default_factory=list)
    touched: Set[Tuple[str, int]] = field(default_factory=set)


class RegistryState:
    """The six per-token tables plus the registry-wide singleton.

    Writes made while a checkpoint is open go through `put`, `drop` and
    `writable_log` so that only the entries a call touches are saved.
    """

    TABLES = ("owners", "metadata", "versions", "statuses", "licenses", "collaborators")

    def __init__(self) -> None:
        self.owners: Dict[int, str] = {}
        self.metadata: Dict[int, TokenMetadata] = {}
        self.versions: Dict[int, BoundedLog[TokenVersion]] = {}
        self.statuses: Dict[int, TokenStatus] = {}
        self.licenses: Dict[int, BoundedLog[TokenLicense]] = {}
        self.collaborators: Dict[int, BoundedLog[Collaborator]] = {}
        self.last_token_id = 0
        self.paused = False
        self.verifier: Optional[VerificationCapability] = None
        self._checkpoint: Optional[Checkpoint] = None

    def snapshot(self) -> Checkpoint:
        self._checkpoint = Checkpoint(self.last_token_id, self.paused, self.verifier)
        return self._checkpoint

    def restore(self, saved: Checkpoint) -> None:
        for table, token_id, previous in reversed(saved.journal):
            rows = getattr(self, table)
            if previous is _ABSENT:
                rows.pop(token_id, None)
            else:
                rows[token_id] = previous
        self.last_token_id = saved.last_token_id
        self.paused = saved.paused
        self.verifier = saved.verifier
        self._close(saved)

    def commit(self, saved: Checkpoint) -> None:
        self._close(saved)

    def _close(self, saved: Checkpoint) -> None:
        if self._checkpoint is saved:
            self._checkpoint = None

    def _remember(self, table: str, token_id: int) -> None:
        checkpoint = self._checkpoint
        if checkpoint is None or (table, token_id) in checkpoint.touched:
            return
        checkpoint.touched.add((table, token_id))
        checkpoint.journal.append((table, token_id, getattr(self, table).get(token_id, _ABSENT)))

    def put(self, table: str, token_id: int, value: Any) -> None:
        self._remember(table, token_id)
        getattr(self, table)[token_id] = value

    def drop(self, token_id: int) -> None:
        """Remove `token_id` from all six tables."""
        for table in self.TABLES:
            self._remember(table, token_id)
            getattr(self, table).pop(token_id, None)

    def writable_log(self, table: str, token_id: int) -> Optional[BoundedLog]:
        """The token's log in `table`, safe to mutate in place.

        The first write in a call swaps in a private copy; the original log
        object stays in the journal untouched.
        """
        log = getattr(self, table).get(token_id)
        checkpoint = self._checkpoint
        if log is None or checkpoint is None or (table, token_id) in checkpoint.touched:
            return log
        log = log.copy()
        self.put(table, token_id, log)
        return log

    def token_ids(self) -> List[int]:
        return sorted(self.owners)


def transaction(operation: str) -> Callable[[F], F]:
    """Run the decorated method as one atomic ledger call.

    The wrapped method receives the caller as its first argument and returns
    the committed value; the wrapper returns a `Response`.
    """
    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(self: "SupplyRegistry", caller: str, *args: Any, **kwargs: Any) -> Response:
            Validators.validate_identity(caller, "caller").raise_if_invalid()
            return self._ledger.execute(
                caller,
                operation,
                self._state,
                lambda: func(self, caller, *args, **kwargs),
            )
        return wrapper  # type: ignore[return-value]
    return decorator


# =============================================================================
# REGISTRY
# =============================================================================

class SupplyRegistry:
    """Registry of humanitarian supply-batch tokens."""

    def __init__(
        self,
        admin: str,
        ledger: Optional[Ledger] = None,
        config: Optional[ReliefChainConfig] = None,
        verifier: Optional[VerificationCapability] = None,
    ):
        Validators.validate_identity(admin, "admin").raise_if_invalid()
        self._admin = admin
        self._config = config or get_config()
        self._ledger = ledger or Ledger()
        self._state = RegistryState()
        self._state.verifier = verifier

    @classmethod
    def from_state(
        cls,
        admin: str,
        state: RegistryState,
        ledger: Optional[Ledger] = None,
        config: Optional[ReliefChainConfig] = None,
    ) -> "SupplyRegistry":
        """Wrap previously built state (used when loading snapshots)."""
        registry = cls(admin, ledger=ledger, config=config)
        registry._state = state
        return registry

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    @property
    def config(self) -> ReliefChainConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Gate and shared helpers
    # -------------------------------------------------------------------------

    def _now(self) -> int:
        return self._ledger.now()

    def _limit(self, name: str) -> int:
        value: ConfigValue[int] = getattr(self._config.registry, name)
        return value.get()

    def _capacity(self, name: str) -> Optional[int]:
        """Configured capacity; 0 means unbounded."""
        return self._limit(name) or None

    def _require_not_paused(self) -> None:
        require(not self._state.paused, ErrorCode.PAUSED)

    def _require_admin(self, caller: str) -> None:
        require(caller == self._admin, ErrorCode.NOT_ADMIN, f"{caller} is not the admin")

    def _require_owner(self, caller: str, token_id: int) -> None:
        require(
            self._state.owners.get(token_id) == caller,
            ErrorCode.NOT_OWNER,
            f"{caller} does not own token {token_id}",
        )

    def _require_metadata(self, token_id: int) -> TokenMetadata:
        meta = self._state.metadata.get(token_id)
        require(meta is not None, ErrorCode.NOT_FOUND, f"token {token_id}")
        return meta

    def _is_verified(self, identity: str) -> bool:
        verifier = self._state.verifier
        return verifier is not None and verifier.is_verified(identity)

    def _require_uri(self, uri: Any) -> None:
        result = Validators.validate_text(uri, "uri", min_length=1, max_length=self._limit("max_uri_length"))
        require(result.is_valid, ErrorCode.INVALID_URI)

    def _require_description(self, description: Any) -> None:
        result = Validators.validate_text(
            description, "description", max_length=self._limit("max_description_length")
        )
        require(result.is_valid, ErrorCode.INVALID_METADATA)

    def _require_text(self, value: Any, field_name: str) -> None:
        """Free text: any string, of any length."""
        require(Validators.validate_text(value, field_name).is_valid, ErrorCode.INVALID_METADATA, field_name)

    def _require_recipient(self, recipient: Any) -> None:
        require(
            Validators.validate_identity(recipient, "recipient").is_valid
            and recipient != self._config.registry.null_identity.get(),
            ErrorCode.INVALID_RECIPIENT,
        )

    def _append(self, log: BoundedLog, item: Any) -> None:
        try:
            log.append(item)
        except CapacityExceeded as exc:
            raise RegistryFault(ErrorCode.HISTORY_FULL, str(exc)) from exc

    def _record_status(self, token_id: int, label: StatusLabel) -> None:
        """Final side effect of every token-mutating operation."""
        self._state.put("statuses", token_id, TokenStatus(status=label.value, last_updated=self._now()))

    # -------------------------------------------------------------------------
    # Minting and retirement
    # -------------------------------------------------------------------------

    @transaction("mint")
    def mint(
        self,
        caller: str,
        recipient: str,
        uri: str,
        supply_type: str,
        quantity: int,
        expiration: Optional[int] = None,
        description: str = "",
        tags: Sequence[str] = (),
    ) -> int:
        """Create a token owned by `recipient`; returns the new id.

        The recipient is taken as given. Only `transfer` refuses the null
        identity.
        """
        self._require_not_paused()
        require(self._is_verified(caller), ErrorCode.NOT_VERIFIED, f"{caller} is not a verified organization")
        self._require_uri(uri)
        require(Validators.validate_positive_int(quantity, "quantity").is_valid, ErrorCode.INVALID_QUANTITY)
        self._require_description(description)

        require(
            not isinstance(tags, str) and isinstance(tags, Sequence),
            ErrorCode.INVALID_METADATA,
            "tags must be a list",
        )
        require(len(tags) <= self._limit("max_tags"), ErrorCode.TOO_MANY_TAGS)
        tag_result = Validators.validate_string_list(
            tags, "tags", max_item_length=self._capacity("max_tag_length")
        )
        require(tag_result.is_valid, ErrorCode.INVALID_METADATA, "tags")
        require(
            Validators.validate_optional_height(expiration, "expiration").is_valid,
            ErrorCode.INVALID_METADATA,
            "expiration",
        )
        self._require_text(supply_type, "supply_type")

        state = self._state
        token_id = state.last_token_id + 1
        state.last_token_id = token_id
        state.put("owners", token_id, recipient)
        state.put("metadata", token_id, TokenMetadata(
            uri=uri,
            supply_type=supply_type,
            quantity=quantity,
            expiration=expiration,
            description=description,
            tags=tag_result.sanitized_value,
        ))
        state.put("versions", token_id, BoundedLog(self._limit("max_versions")))
        state.put("licenses", token_id, BoundedLog(self._capacity("max_licenses")))
        state.put("collaborators", token_id, BoundedLog(self._capacity("max_collaborators")))
        self._record_status(token_id, StatusLabel.MINTED)

        logger.info("Token minted", operation="mint", token_id=token_id, owner=recipient)
        return token_id

    @transaction("burn")
    def burn(self, caller: str, token_id: int) -> bool:
        """Retire a token and every record attached to it.

        Like every committed call, a burn advances the ledger clock by one.
        """
        self._require_not_paused()
        self._require_owner(caller, token_id)

        self._state.drop(token_id)
        return True

    # -------------------------------------------------------------------------
    # Ownership
    # -------------------------------------------------------------------------

    @transaction("transfer")
    def transfer(self, caller: str, token_id: int, sender: str, recipient: str) -> bool:
        """Move a token from `sender` to `recipient`.

        The caller need not be the owner; the asserted sender must be. This is
        what lets the distribution module finalize deliveries on an owner's
        behalf.
        """
        self._require_not_paused()
        require(
            self._state.owners.get(token_id) == sender,
            ErrorCode.NOT_OWNER,
            f"{sender} does not own token {token_id}",
        )
        meta = self._require_metadata(token_id)
        require(not meta.locked, ErrorCode.TOKEN_LOCKED)
        self._require_recipient(recipient)

        self._state.put("owners", token_id, recipient)
        self._record_status(token_id, StatusLabel.TRANSFERRED)
        return True

    @transaction("lock")
    def lock(self, caller: str, token_id: int) -> bool:
        self._require_not_paused()
        self._require_owner(caller, token_id)
        meta = self._require_metadata(token_id)
        require(not meta.locked, ErrorCode.TOKEN_LOCKED, "already locked")

        self._state.put("metadata", token_id, replace(meta, locked=True))
        self._record_status(token_id, StatusLabel.LOCKED)
        return True

    @transaction("unlock")
    def unlock(self, caller: str, token_id: int) -> bool:
        self._require_not_paused()
        self._require_owner(caller, token_id)
        meta = self._require_metadata(token_id)
        require(meta.locked, ErrorCode.TOKEN_LOCKED, "not locked")

        self._state.put("metadata", token_id, replace(meta, locked=False))
        self._record_status(token_id, StatusLabel.UNLOCKED)
        return True

    # -------------------------------------------------------------------------
    # Metadata and versions
    # -------------------------------------------------------------------------

    @transaction("update-metadata")
    def update_metadata(self, caller: str, token_id: int, uri: str, description: str) -> bool:
        """Replace uri and description; every other metadata field is kept."""
        self._require_not_paused()
        self._require_owner(caller, token_id)
        meta = self._require_metadata(token_id)
        self._require_uri(uri)
        self._require_description(description)

        self._state.put("metadata", token_id, replace(meta, uri=uri, description=description))
        self._record_status(token_id, StatusLabel.METADATA_UPDATED)
        return True

    @transaction("add-version")
    def add_version(
        self,
        caller: str,
        token_id: int,
        version: int,
        updated_uri: str,
        notes: str = "",
    ) -> bool:
        self._require_not_paused()
        self._require_owner(caller, token_id)
        require(Validators.validate_positive_int(version, "version").is_valid, ErrorCode.INVALID_VERSION)
        history = self._state.writable_log("versions", token_id)
        require(history is not None, ErrorCode.NOT_FOUND, f"token {token_id}")
        require(not history.is_full, ErrorCode.HISTORY_FULL)
        self._require_uri(updated_uri)
        self._require_text(notes, "notes")

        self._append(history, TokenVersion(version, updated_uri, notes, self._now()))
        self._record_status(token_id, StatusLabel.VERSION_ADDED)
        return True

    # -------------------------------------------------------------------------
    # Licensing
    # -------------------------------------------------------------------------

    @transaction("grant-license")
    def grant_license(
        self,
        caller: str,
        token_id: int,
        licensee: str,
        duration: int,
        terms: str = "",
    ) -> bool:
        """Grant `licensee` use of the token until now + duration."""
        self._require_not_paused()
        self._require_owner(caller, token_id)
        require(Validators.validate_positive_int(duration, "duration").is_valid, ErrorCode.INVALID_DURATION)
        require(
            Validators.validate_identity(licensee, "licensee").is_valid,
            ErrorCode.INVALID_METADATA,
            "licensee",
        )
        self._require_text(terms, "terms")
        licenses = self._state.writable_log("licenses", token_id)
        require(licenses is not None, ErrorCode.NOT_FOUND, f"token {token_id}")

        self._append(licenses, TokenLicense(licensee=licensee, expiry=self._now() + duration, terms=terms))
        self._record_status(token_id, StatusLabel.LICENSE_GRANTED)
        return True

    @transaction("revoke-license")
    def revoke_license(self, caller: str, token_id: int, licensee: str) -> bool:
        """Remove every license held by `licensee`."""
        self._require_not_paused()
        self._require_owner(caller, token_id)
        licenses = self._state.writable_log("licenses", token_id)
        require(licenses is not None, ErrorCode.NOT_FOUND, f"token {token_id}")

        removed = licenses.remove_where(lambda entry: entry.licensee == licensee)
        logger.debug("Licenses revoked", operation="revoke-license", token_id=token_id, removed=removed)
        self._record_status(token_id, StatusLabel.LICENSE_REVOKED)
        return True

    # -------------------------------------------------------------------------
    # Collaborators
    # -------------------------------------------------------------------------

    @transaction("add-collaborator")
    def add_collaborator(
        self,
        caller: str,
        token_id: int,
        collaborator: str,
        role: str,
        permissions: Sequence[str] = (),
    ) -> bool:
        self._require_not_paused()
        self._require_owner(caller, token_id)
        require(
            Validators.validate_identity(collaborator, "collaborator").is_valid,
            ErrorCode.INVALID_METADATA,
            "collaborator",
        )
        self._require_text(role, "role")
        perm_result = Validators.validate_string_list(permissions, "permissions")
        require(perm_result.is_valid, ErrorCode.INVALID_METADATA, "permissions")
        collaborators = self._state.writable_log("collaborators", token_id)
        require(collaborators is not None, ErrorCode.NOT_FOUND, f"token {token_id}")

        self._append(
            collaborators,
            Collaborator(
                collaborator=collaborator,
                role=role,
                permissions=perm_result.sanitized_value,
                added_at=self._now(),
            ),
        )
        self._record_status(token_id, StatusLabel.COLLABORATOR_ADDED)
        return True

    # -------------------------------------------------------------------------
    # Admin operations
    # -------------------------------------------------------------------------

    @transaction("pause")
    def pause(self, caller: str) -> bool:
        self._require_admin(caller)
        self._state.paused = True
        logger.info("Registry paused", operation="pause")
        return True

    @transaction("unpause")
    def unpause(self, caller: str) -> bool:
        self._require_admin(caller)
        self._state.paused = False
        logger.info("Registry unpaused", operation="unpause")
        return True

    @transaction("set-verification-capability")
    def set_verification_capability(
        self,
        caller: str,
        capability: Optional[VerificationCapability],
    ) -> bool:
        """Install (or with None, remove) the capability consulted by mint."""
        self._require_admin(caller)
        if capability is not None and not isinstance(capability, VerificationCapability):
            raise TypeError(f"Expected VerificationCapability, got {type(capability).__name__}")
        self._state.verifier = capability
        logger.info(
            "Verification capability set",
            operation="set-verification-capability",
            kind=capability.kind if capability is not None else None,
        )
        return True

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_admin(self) -> str:
        return self._admin

    def is_paused(self) -> bool:
        return self._state.paused

    def get_last_token_id(self) -> int:
        return self._state.last_token_id

    def get_verification_capability(self) -> Optional[VerificationCapability]:
        return self._state.verifier

    def token_ids(self) -> List[int]:
        """Ids of every existing (minted and not burned) token."""
        return self._state.token_ids()

    def get_owner(self, token_id: int) -> Optional[str]:
        return self._state.owners.get(token_id)

    def get_metadata(self, token_id: int) -> Optional[TokenMetadata]:
        return self._state.metadata.get(token_id)

    def get_token_uri(self, token_id: int) -> Optional[str]:
        meta = self._state.metadata.get(token_id)
        return meta.uri if meta is not None else None

    def is_locked(self, token_id: int) -> Optional[bool]:
        meta = self._state.metadata.get(token_id)
        return meta.locked if meta is not None else None

    def get_status(self, token_id: int) -> Optional[TokenStatus]:
        return self._state.statuses.get(token_id)

    def get_versions(self, token_id: int) -> Optional[Tuple[TokenVersion, ...]]:
        log = self._state.versions.get(token_id)
        return log.as_tuple() if log is not None else None

    def get_licenses(self, token_id: int) -> Optional[Tuple[TokenLicense, ...]]:
        log = self._state.licenses.get(token_id)
        return log.as_tuple() if log is not None else None

    def get_collaborators(self, token_id: int) -> Optional[Tuple[Collaborator, ...]]:
        log = self._state.collaborators.get(token_id)
        return log.as_tuple() if log is not None else None

    def is_license_active(self, token_id: int, licensee: str) -> bool:
        with self._ledger.consistent_read() as now:
            log = self._state.licenses.get(token_id)
            if log is None:
                return False
            return any(entry.licensee == licensee and entry.is_active_at(now) for entry in log)

    def describe_token(self, token_id: int) -> Optional[Dict[str, Any]]:
        """Every per-token record in one consistent plain-dict view."""
        with self._ledger.consistent_read():
            owner = self._state.owners.get(token_id)
            if owner is None:
                return None
            return {
                "token_id": token_id,
                "owner": owner,
                "metadata": self._state.metadata[token_id].to_dict(),
                "status": self._state.statuses[token_id].to_dict(),
                "versions": [v.to_dict() for v in self._state.versions[token_id]],
                "licenses": [lic.to_dict() for lic in self._state.licenses[token_id]],
                "collaborators": [c.to_dict() for c in self._state.collaborators[token_id]],
            }

    def iter_tokens(self) -> Iterator[Dict[str, Any]]:
        for token_id in self.token_ids():
            record = self.describe_token(token_id)
            if record is not None:
                yield record
