"""
ReliefChain - Humanitarian Supply Registry

Tracks unique, non-duplicable supply-batch tokens representing aid shipments
from creation through transfer, versioned metadata, time-bound licensing and
collaborator delegation to retirement. Every mutation is an atomic call
authored by an identified caller against an append-only ledger.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────┐
    │  cli.py           reliefchain command line over snapshot files      │
    │  snapshot.py      state export/import committed by a state root     │
    │                                                                     │
    │  registry.py      tokens, metadata, versions, status, licenses,     │
    │                   collaborators, admin gate                         │
    │  verification.py  allow-list and Ed25519 signed-approval verifiers  │
    │  ledger.py        serialization, rollback, logical clock, receipts  │
    │                                                                     │
    │  records.py       immutable records, fixed-capacity logs            │
    │  errors.py        error codes, RegistryFault, Response              │
    │  hardening.py     input validators, atomic counters, invariants     │
    │  config.py        layered YAML/env configuration                    │
    │  observability.py structured logging, correlation ids               │
    │  core.py          hashing, canonical JSON, document I/O             │
    └─────────────────────────────────────────────────────────────────────┘

Quick Start
───────────

    from reliefchain import OrganizationRegistry, SupplyRegistry

    orgs = OrganizationRegistry(admin="deployer", organizations=["unicef"])
    registry = SupplyRegistry(admin="deployer", verifier=orgs)
    token_id = registry.mint("unicef", "unicef", "ipfs://batch-1", "vaccine", 500).unwrap()
"""

__version__ = "0.1.0"


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    """Lazy import ReliefChain modules on first access."""
    if name in ("SupplyRegistry", "RegistryState"):
        from reliefchain import registry
        return getattr(registry, name)

    if name in ("Ledger", "LogicalClock", "Receipt"):
        from reliefchain import ledger
        return getattr(ledger, name)

    if name in ("ErrorCode", "RegistryFault", "Response"):
        from reliefchain import errors
        return getattr(errors, name)

    if name in ("StatusLabel", "TokenMetadata", "TokenVersion", "TokenStatus",
                "TokenLicense", "Collaborator", "BoundedLog", "CapacityExceeded"):
        from reliefchain import records
        return getattr(records, name)

    if name in ("VerificationCapability", "OrganizationRegistry",
                "SignedApprovalVerifier", "VerificationError", "sign_approval",
                "generate_verifier_keypair"):
        from reliefchain import verification
        return getattr(verification, name)

    if name in ("export_snapshot", "load_snapshot", "save_snapshot",
                "read_snapshot", "SnapshotError"):
        from reliefchain import snapshot
        return getattr(snapshot, name)

    if name in ("ConfigManager", "ConfigError", "get_config", "get_config_manager"):
        from reliefchain import config
        return getattr(config, name)

    raise AttributeError(f"module 'reliefchain' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Registry
    "SupplyRegistry",
    "RegistryState",
    # Ledger
    "Ledger",
    "LogicalClock",
    "Receipt",
    # Errors
    "ErrorCode",
    "RegistryFault",
    "Response",
    # Records
    "StatusLabel",
    "TokenMetadata",
    "TokenVersion",
    "TokenStatus",
    "TokenLicense",
    "Collaborator",
    "BoundedLog",
    # Verification
    "VerificationCapability",
    "OrganizationRegistry",
    "SignedApprovalVerifier",
    # Snapshots
    "export_snapshot",
    "load_snapshot",
    "save_snapshot",
    "read_snapshot",
    # Config
    "get_config",
    "get_config_manager",
]
