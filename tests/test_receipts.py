"""
tests/test_receipts.py

Receipt signing and offline verification.

verify_receipt() must return False, never raise, for anything that is not
a valid ed25519 signature by the given key over the receipt's fields.
"""

import pytest

from swapgraph.core.crypto import Ed25519KeyManager
from swapgraph.settlement.receipts import ReceiptSigner, receipt_id_for, verify_receipt

from helpers.factories import SEED, T0


@pytest.fixture
def key():
    return Ed25519KeyManager.from_private_bytes(SEED)


@pytest.fixture
def receipt(key):
    return ReceiptSigner(key).issue(
        cycle_id=    "cycle_abc",
        final_state= "settled",
        intent_ids=  ["intent_a", "intent_b"],
        asset_ids=   ["item_b", "item_a", "item_b"],
        created_at=  T0,
    )


class TestIssue:

    def test_fields(self, key, receipt):
        assert receipt.id == receipt_id_for("cycle_abc", "settled")
        assert receipt.asset_ids == ["item_a", "item_b"]
        assert receipt.reason_code is None
        assert receipt.signature["alg"] == "ed25519"
        assert receipt.signature["key_id"] == key.key_id

    def test_custom_key_id(self, key):
        r = ReceiptSigner(key, key_id="receipts-2026").issue("c", "failed", [], [], T0, "deposit_timeout")
        assert r.signature["key_id"] == "receipts-2026"
        assert verify_receipt(r, key.public_key_hex)

    def test_signing_is_deterministic(self, key, receipt):
        again = ReceiptSigner(key).issue("cycle_abc", "settled", ["intent_a", "intent_b"], ["item_a", "item_b"], T0)
        assert again.to_dict() == receipt.to_dict()


class TestVerify:

    def test_valid(self, key, receipt):
        assert verify_receipt(receipt, key.public_key_hex)
        assert verify_receipt(receipt.to_dict(), key.public_key_hex)

    @pytest.mark.parametrize("field,value", [
        ("final_state", "failed"),
        ("intent_ids", ["intent_a"]),
        ("asset_ids", ["item_a", "item_z"]),
        ("created_at", "2030-01-01T00:00:00.000Z"),
        ("reason_code", "deposit_timeout"),
    ])
    def test_tampered_field(self, key, receipt, field, value):
        data = receipt.to_dict()
        data[field] = value
        assert not verify_receipt(data, key.public_key_hex)

    def test_wrong_key(self, receipt):
        other = Ed25519KeyManager.generate()
        assert not verify_receipt(receipt, other.public_key_hex)

    def test_missing_signature(self, key, receipt):
        data = receipt.to_dict()
        data["signature"] = None
        assert not verify_receipt(data, key.public_key_hex)

    def test_wrong_alg(self, key, receipt):
        data = receipt.to_dict()
        data["signature"] = dict(data["signature"], alg="rsa")
        assert not verify_receipt(data, key.public_key_hex)

    @pytest.mark.parametrize("junk", [{}, {"id": "x"}, "not a receipt", None])
    def test_junk_never_raises(self, key, junk):
        assert verify_receipt(junk, key.public_key_hex) is False

    @pytest.mark.parametrize("public_key_hex", ["", "zz" * 32, "ab" * 31, None])
    def test_bad_public_key(self, receipt, public_key_hex):
        assert verify_receipt(receipt, public_key_hex) is False


class TestKeyManager:

    def test_round_trip_through_pem(self, key, tmp_path):
        path = tmp_path / "keys" / "signing.pem"
        key.save(path)
        loaded = Ed25519KeyManager.from_file(path)
        assert loaded.public_key_hex == key.public_key_hex
        assert loaded.key_id == key.key_id

    def test_seed_gives_stable_key(self, key):
        assert Ed25519KeyManager.from_private_bytes(SEED).public_key_hex == key.public_key_hex
        assert len(key.public_key_hex) == 64

    def test_detached_verify(self, key):
        sig = key.sign(b"payload")
        assert key.verify(b"payload", sig)
        assert not key.verify(b"payload!", sig)
        assert not Ed25519KeyManager.verify_detached(b"payload", sig[:-2], key.public_key_hex)
