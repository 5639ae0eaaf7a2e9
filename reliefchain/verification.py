"""
ReliefChain Verification Capabilities

The registry only mints on behalf of callers that a verification capability
approves. The capability is a pluggable interface injected by the admin; the
registry never decides organization trustworthiness itself.

Two concrete capabilities ship with the package:

- OrganizationRegistry: an allow-list curated by a single admin identity.
- SignedApprovalVerifier: an organization is verified by presenting an
  Ed25519 signature, made by a trusted verifier key, over the canonical JSON
  approval statement {"type": "OrganizationApproval", "organization": id}.

Signatures are raw 64-byte Ed25519 signatures encoded as base64url without
padding; public keys are raw 32-byte keys encoded the same way.
"""

from __future__ import annotations

import base64
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from reliefchain.core import canonical_json_bytes
from reliefchain.errors import ErrorCode, Response
from reliefchain.hardening import Validators
from reliefchain.observability import RegistryLayer, get_logger

logger = get_logger("verification", RegistryLayer.VERIFICATION)

APPROVAL_TYPE = "OrganizationApproval"


class VerificationError(Exception):
    """Malformed key, signature or serialized capability."""
    pass


def b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    pad = "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("ascii"))


# =============================================================================
# CAPABILITY INTERFACE
# =============================================================================

class VerificationCapability(ABC):
    """Answers "is this identity an approved organization"."""

    kind: ClassVar[str] = ""

    @abstractmethod
    def is_verified(self, identity: str) -> bool:
        ...

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        ...


# =============================================================================
# ADMIN ALLOW-LIST
# =============================================================================

class OrganizationRegistry(VerificationCapability):
    """Admin-curated set of verified organizations."""

    kind = "organization-registry"

    def __init__(self, admin: str, organizations: Iterable[str] = ()):
        Validators.validate_identity(admin, "admin").raise_if_invalid()
        self._admin = admin
        self._organizations: Set[str] = set(organizations)
        self._lock = threading.Lock()

    @property
    def admin(self) -> str:
        return self._admin

    def approve(self, caller: str, organization: str) -> Response[bool]:
        """Add an organization to the allow-list. Only the admin may call."""
        if caller != self._admin:
            logger.warning(
                "Approval rejected",
                operation="approve",
                error_code=ErrorCode.NOT_ADMIN.name,
                caller=caller,
            )
            return Response.failure(ErrorCode.NOT_ADMIN)
        if not Validators.validate_identity(organization, "organization").is_valid:
            return Response.failure(ErrorCode.INVALID_RECIPIENT)

        with self._lock:
            self._organizations.add(organization)
        logger.info("Organization approved", operation="approve", organization=organization)
        return Response.success(True)

    def revoke(self, caller: str, organization: str) -> Response[bool]:
        """Remove an organization. Revoking an unknown organization is a no-op."""
        if caller != self._admin:
            logger.warning(
                "Revocation rejected",
                operation="revoke",
                error_code=ErrorCode.NOT_ADMIN.name,
                caller=caller,
            )
            return Response.failure(ErrorCode.NOT_ADMIN)

        with self._lock:
            self._organizations.discard(organization)
        logger.info("Organization revoked", operation="revoke", organization=organization)
        return Response.success(True)

    def organizations(self) -> List[str]:
        with self._lock:
            return sorted(self._organizations)

    def is_verified(self, identity: str) -> bool:
        with self._lock:
            return identity in self._organizations

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "admin": self._admin,
            "organizations": self.organizations(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OrganizationRegistry":
        return cls(admin=data["admin"], organizations=data.get("organizations") or ())


# =============================================================================
# SIGNED APPROVALS
# =============================================================================

def approval_statement(organization: str) -> bytes:
    """Canonical bytes a verifier key signs to approve `organization`."""
    return canonical_json_bytes({"type": APPROVAL_TYPE, "organization": organization})


def generate_verifier_keypair() -> Tuple[Ed25519PrivateKey, str]:
    """Generate a verifier key; returns (private_key, public_key_b64url)."""
    priv = Ed25519PrivateKey.generate()
    return priv, public_key_b64url(priv)


def public_key_b64url(private_key: Ed25519PrivateKey) -> str:
    pub_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return b64url_encode(pub_bytes)


def private_key_b64url(private_key: Ed25519PrivateKey) -> str:
    priv_bytes = private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return b64url_encode(priv_bytes)


def load_private_key(encoded: str) -> Ed25519PrivateKey:
    try:
        raw = b64url_decode(encoded)
    except ValueError as exc:
        raise VerificationError(f"Private key is not base64url: {exc}") from exc
    if len(raw) != 32:
        raise VerificationError(f"Ed25519 private key must be 32 bytes, got {len(raw)}")
    return Ed25519PrivateKey.from_private_bytes(raw)


def load_public_key(encoded: str) -> Ed25519PublicKey:
    try:
        raw = b64url_decode(encoded)
    except ValueError as exc:
        raise VerificationError(f"Public key is not base64url: {exc}") from exc
    if len(raw) != 32:
        raise VerificationError(f"Ed25519 public key must be 32 bytes, got {len(raw)}")
    return Ed25519PublicKey.from_public_bytes(raw)


def sign_approval(private_key: Ed25519PrivateKey, organization: str) -> str:
    """Sign an approval for `organization`; returns the base64url signature."""
    return b64url_encode(private_key.sign(approval_statement(organization)))


@dataclass(frozen=True)
class SignedApproval:
    organization: str
    key_id: str
    signature: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "organization": self.organization,
            "key_id": self.key_id,
            "signature": self.signature,
        }


class SignedApprovalVerifier(VerificationCapability):
    """Verifies organizations holding an approval signed by a trusted key.

    Trusted keys are addressed by key id. Approvals are accepted only after
    the signature checks out; an identity is verified once any accepted
    approval names it.
    """

    kind = "signed-approval"

    def __init__(self, trusted_keys: Mapping[str, str]):
        self._trusted: Dict[str, Ed25519PublicKey] = {
            key_id: load_public_key(encoded) for key_id, encoded in trusted_keys.items()
        }
        self._encoded_keys = dict(trusted_keys)
        self._approvals: Dict[str, SignedApproval] = {}
        self._lock = threading.Lock()

    def trusted_key_ids(self) -> List[str]:
        return sorted(self._trusted)

    def check_signature(self, organization: str, key_id: str, signature: str) -> bool:
        """Return True if `signature` is a valid approval by trusted key `key_id`."""
        pub = self._trusted.get(key_id)
        if pub is None:
            return False
        try:
            sig = b64url_decode(signature)
        except ValueError:
            return False
        if len(sig) != 64:
            return False
        try:
            pub.verify(sig, approval_statement(organization))
        except InvalidSignature:
            return False
        return True

    def submit_approval(self, organization: str, key_id: str, signature: str) -> bool:
        """Record an approval if its signature is valid; return whether it was accepted."""
        if not self.check_signature(organization, key_id, signature):
            logger.warning(
                "Approval signature rejected",
                operation="submit_approval",
                error_code=ErrorCode.NOT_VERIFIED.name,
                organization=organization,
                key_id=key_id,
            )
            return False

        with self._lock:
            self._approvals[organization] = SignedApproval(organization, key_id, signature)
        logger.info(
            "Approval accepted",
            operation="submit_approval",
            organization=organization,
            key_id=key_id,
        )
        return True

    def approvals(self) -> List[SignedApproval]:
        with self._lock:
            return [self._approvals[k] for k in sorted(self._approvals)]

    def is_verified(self, identity: str) -> bool:
        with self._lock:
            approval = self._approvals.get(identity)
        # A key may have been dropped from the trust set since acceptance.
        return approval is not None and approval.key_id in self._trusted

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "trusted_keys": dict(sorted(self._encoded_keys.items())),
            "approvals": [a.to_dict() for a in self.approvals()],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SignedApprovalVerifier":
        verifier = cls(data.get("trusted_keys") or {})
        for entry in data.get("approvals") or ():
            if not verifier.submit_approval(entry["organization"], entry["key_id"], entry["signature"]):
                raise VerificationError(
                    f"Stored approval for {entry['organization']!r} does not verify"
                )
        return verifier


# =============================================================================
# SERIALIZATION
# =============================================================================

CAPABILITY_TYPES = {
    OrganizationRegistry.kind: OrganizationRegistry,
    SignedApprovalVerifier.kind: SignedApprovalVerifier,
}


def capability_to_dict(capability: Optional[VerificationCapability]) -> Optional[Dict[str, Any]]:
    return capability.to_dict() if capability is not None else None


def capability_from_dict(data: Optional[Mapping[str, Any]]) -> Optional[VerificationCapability]:
    """Rebuild a capability from its `to_dict()` form; None stays None."""
    if data is None:
        return None
    kind = data.get("kind")
    cls = CAPABILITY_TYPES.get(kind)
    if cls is None:
        raise VerificationError(f"Unknown verification capability kind: {kind!r}")
    return cls.from_dict(data)
