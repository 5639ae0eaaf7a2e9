"""
Verification capability tests: admin allow-list and Ed25519 signed approvals.
"""

import pytest

from reliefchain.errors import ErrorCode
from reliefchain.hardening import ValidationErrors
from reliefchain.verification import (
    OrganizationRegistry,
    SignedApprovalVerifier,
    VerificationCapability,
    VerificationError,
    approval_statement,
    b64url_encode,
    capability_from_dict,
    capability_to_dict,
    generate_verifier_keypair,
    load_private_key,
    private_key_b64url,
    sign_approval,
)


class TestOrganizationRegistry:
    """Tests for the admin-curated allow-list."""

    def test_approve_and_revoke(self):
        orgs = OrganizationRegistry("admin")
        assert not orgs.is_verified("unicef")

        assert orgs.approve("admin", "unicef").ok
        assert orgs.is_verified("unicef")
        assert orgs.organizations() == ["unicef"]

        assert orgs.revoke("admin", "unicef").ok
        assert not orgs.is_verified("unicef")

    def test_non_admin_rejected(self):
        orgs = OrganizationRegistry("admin", ["msf"])
        assert orgs.approve("msf", "rogue").error == ErrorCode.NOT_ADMIN
        assert orgs.revoke("msf", "msf").error == ErrorCode.NOT_ADMIN
        assert orgs.organizations() == ["msf"]

    def test_empty_organization_rejected(self):
        orgs = OrganizationRegistry("admin")
        assert not orgs.approve("admin", "").ok

    def test_is_a_capability(self):
        assert isinstance(OrganizationRegistry("admin"), VerificationCapability)

    def test_empty_admin_rejected(self):
        with pytest.raises(ValidationErrors):
            OrganizationRegistry("")

    def test_round_trip(self):
        orgs = OrganizationRegistry("admin", ["b", "a"])
        data = orgs.to_dict()
        assert data == {"kind": "organization-registry", "admin": "admin", "organizations": ["a", "b"]}
        restored = capability_from_dict(data)
        assert isinstance(restored, OrganizationRegistry)
        assert restored.is_verified("a") and restored.admin == "admin"


class TestSignedApprovalVerifier:
    """Tests for Ed25519 signed approvals."""

    @pytest.fixture
    def keypair(self):
        return generate_verifier_keypair()

    @pytest.fixture
    def verifier(self, keypair):
        _, pub = keypair
        return SignedApprovalVerifier({"ocha-1": pub})

    def test_valid_approval_verifies(self, keypair, verifier):
        priv, _ = keypair
        signature = sign_approval(priv, "unicef")
        assert verifier.submit_approval("unicef", "ocha-1", signature) is True
        assert verifier.is_verified("unicef")

    def test_signature_bound_to_organization(self, keypair, verifier):
        priv, _ = keypair
        signature = sign_approval(priv, "unicef")
        assert verifier.submit_approval("rogue", "ocha-1", signature) is False
        assert not verifier.is_verified("rogue")

    def test_untrusted_key_rejected(self, verifier):
        other, _ = generate_verifier_keypair()
        signature = sign_approval(other, "unicef")
        assert verifier.submit_approval("unicef", "ocha-1", signature) is False
        assert verifier.submit_approval("unicef", "unknown-key", signature) is False

    def test_malformed_signature_rejected(self, verifier):
        assert verifier.submit_approval("unicef", "ocha-1", "not base64!") is False
        assert verifier.submit_approval("unicef", "ocha-1", b64url_encode(b"short")) is False

    def test_statement_is_canonical_json(self):
        assert approval_statement("msf") == b'{"organization":"msf","type":"OrganizationApproval"}'

    def test_bad_public_key(self):
        with pytest.raises(VerificationError):
            SignedApprovalVerifier({"k": b64url_encode(b"\x00" * 31)})

    def test_private_key_round_trip(self, keypair, verifier):
        priv, _ = keypair
        reloaded = load_private_key(private_key_b64url(priv))
        assert verifier.submit_approval("msf", "ocha-1", sign_approval(reloaded, "msf"))

    def test_round_trip(self, keypair, verifier):
        priv, pub = keypair
        verifier.submit_approval("unicef", "ocha-1", sign_approval(priv, "unicef"))

        data = capability_to_dict(verifier)
        assert data["kind"] == "signed-approval"
        assert data["trusted_keys"] == {"ocha-1": pub}

        restored = capability_from_dict(data)
        assert restored.is_verified("unicef")
        assert restored.trusted_key_ids() == ["ocha-1"]

    def test_tampered_stored_approval_rejected(self, keypair, verifier):
        priv, _ = keypair
        verifier.submit_approval("unicef", "ocha-1", sign_approval(priv, "unicef"))
        data = verifier.to_dict()
        data["approvals"][0]["organization"] = "rogue"
        with pytest.raises(VerificationError):
            capability_from_dict(data)


class TestCapabilitySerialization:

    def test_none(self):
        assert capability_to_dict(None) is None
        assert capability_from_dict(None) is None

    def test_unknown_kind(self):
        with pytest.raises(VerificationError):
            capability_from_dict({"kind": "oracle"})
