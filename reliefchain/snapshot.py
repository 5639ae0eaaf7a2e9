"""
Registry state snapshots.

A snapshot is a plain-dict image of the whole registry: the registry-wide
singleton, the ledger height, the verification capability and every existing
token with all of its records. It commits to its own content with

    state_root = sha256(canonical_json(snapshot without "state_root"))

so a snapshot edited by hand (or corrupted on disk) is rejected on load.
Snapshots validate against the packaged Draft 2020-12 schema and may be
stored as JSON or YAML.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from reliefchain.config import ReliefChainConfig, get_config
from reliefchain.core import digest_of, load_document, write_document
from reliefchain.ledger import Ledger
from reliefchain.observability import RegistryLayer, get_logger, timed_operation
from reliefchain.records import (
    BoundedLog,
    CapacityExceeded,
    Collaborator,
    TokenLicense,
    TokenMetadata,
    TokenStatus,
    TokenVersion,
)
from reliefchain.registry import RegistryState, SupplyRegistry
from reliefchain.schema import SNAPSHOT_SCHEMA, validate_against_schema
from reliefchain.verification import VerificationError, capability_from_dict, capability_to_dict

logger = get_logger("snapshot", RegistryLayer.SNAPSHOT)

SNAPSHOT_TYPE = "SupplyRegistrySnapshot"
SNAPSHOT_VERSION = 1


class SnapshotError(Exception):
    """Snapshot failed validation or does not match its state root."""
    pass


def compute_state_root(snapshot: Dict[str, Any]) -> str:
    body = {k: v for k, v in snapshot.items() if k != "state_root"}
    return digest_of(body)


@timed_operation(logger, "export_snapshot")
def export_snapshot(registry: SupplyRegistry) -> Dict[str, Any]:
    """Capture the registry's committed state."""
    with registry.ledger.consistent_read() as height:
        snapshot: Dict[str, Any] = {
            "type": SNAPSHOT_TYPE,
            "version": SNAPSHOT_VERSION,
            "admin": registry.get_admin(),
            "paused": registry.is_paused(),
            "last_token_id": registry.get_last_token_id(),
            "height": height,
            "verification": capability_to_dict(registry.get_verification_capability()),
            "tokens": list(registry.iter_tokens()),
        }
    snapshot["state_root"] = compute_state_root(snapshot)
    return snapshot


def _capacity(value: int) -> Optional[int]:
    return value or None


def _rebuild_state(data: Dict[str, Any], config: ReliefChainConfig) -> RegistryState:
    limits = config.registry
    state = RegistryState()
    state.last_token_id = data["last_token_id"]
    state.paused = data["paused"]

    try:
        state.verifier = capability_from_dict(data["verification"])
    except VerificationError as exc:
        raise SnapshotError(f"Invalid verification capability: {exc}") from exc

    for token in data["tokens"]:
        token_id = token["token_id"]
        if token_id > state.last_token_id:
            raise SnapshotError(f"Token {token_id} exceeds last_token_id {state.last_token_id}")
        if token_id in state.owners:
            raise SnapshotError(f"Duplicate token {token_id}")

        try:
            versions = BoundedLog(
                limits.max_versions.get(),
                (TokenVersion.from_dict(v) for v in token["versions"]),
            )
            licenses = BoundedLog(
                _capacity(limits.max_licenses.get()),
                (TokenLicense.from_dict(lic) for lic in token["licenses"]),
            )
            collaborators = BoundedLog(
                _capacity(limits.max_collaborators.get()),
                (Collaborator.from_dict(c) for c in token["collaborators"]),
            )
        except CapacityExceeded as exc:
            raise SnapshotError(f"Token {token_id}: {exc}") from exc

        state.owners[token_id] = token["owner"]
        state.metadata[token_id] = TokenMetadata.from_dict(token["metadata"])
        state.statuses[token_id] = TokenStatus.from_dict(token["status"])
        state.versions[token_id] = versions
        state.licenses[token_id] = licenses
        state.collaborators[token_id] = collaborators

    return state


@timed_operation(logger, "load_snapshot")
def load_snapshot(data: Any, config: Optional[ReliefChainConfig] = None) -> SupplyRegistry:
    """Validate a snapshot and rebuild the registry it describes.

    The rebuilt ledger starts at the snapshot's height with an empty receipt
    log.
    """
    errors = validate_against_schema(data, SNAPSHOT_SCHEMA)
    if errors:
        raise SnapshotError("Snapshot failed schema validation: " + "; ".join(errors))

    expected = compute_state_root(data)
    if expected != data["state_root"]:
        raise SnapshotError(
            f"State root mismatch: recorded {data['state_root']}, computed {expected}"
        )

    config = config or get_config()
    state = _rebuild_state(data, config)
    registry = SupplyRegistry.from_state(
        data["admin"],
        state,
        ledger=Ledger(genesis_height=data["height"]),
        config=config,
    )
    logger.info(
        "Snapshot loaded",
        operation="load_snapshot",
        tokens=len(state.owners),
        height=data["height"],
        state_root=expected,
    )
    return registry


def save_snapshot(registry: SupplyRegistry, path: Union[str, Path]) -> Dict[str, Any]:
    """Export and write a snapshot; format follows the file suffix."""
    snapshot = export_snapshot(registry)
    write_document(Path(path), snapshot)
    return snapshot


def read_snapshot(path: Union[str, Path], config: Optional[ReliefChainConfig] = None) -> SupplyRegistry:
    path = Path(path)
    if not path.exists():
        raise SnapshotError(f"Snapshot file not found: {path}")
    try:
        data = load_document(path)
    except (yaml.YAMLError, ValueError) as exc:
        raise SnapshotError(f"Cannot parse snapshot {path}: {exc}") from exc
    return load_snapshot(data, config=config)
