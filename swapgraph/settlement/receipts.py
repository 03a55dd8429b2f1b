"""
swapgraph/settlement/receipts.py

Signed terminal receipts for settled and failed cycles.

The signature covers the RFC 8785 form of every receipt field except
`signature` itself:

    signature = {"key_id": ..., "alg": "ed25519", "sig": base64url}

verify_receipt() needs only the public key hex and never raises.
"""

from typing import Any, Dict, Iterable, Optional, Union

from swapgraph.core.canonical import canonicalize, short_hash
from swapgraph.core.crypto import SIGNATURE_ALG, Ed25519KeyManager
from swapgraph.core.models import SwapReceipt


def receipt_id_for(cycle_id: str, final_state: str) -> str:
    return f"receipt_{short_hash(f'{cycle_id}|{final_state}')}"


class ReceiptSigner:

    def __init__(self, key_manager: Ed25519KeyManager, key_id: Optional[str] = None) -> None:
        self.key_manager = key_manager
        self.key_id      = key_id or key_manager.key_id

    @property
    def public_key_hex(self) -> str:
        return self.key_manager.public_key_hex

    def issue(
        self,
        cycle_id:    str,
        final_state: str,
        intent_ids:  Iterable[str],
        asset_ids:   Iterable[str],
        created_at:  str,
        reason_code: Optional[str] = None,
    ) -> SwapReceipt:
        receipt = SwapReceipt(
            id=          receipt_id_for(cycle_id, final_state),
            cycle_id=    cycle_id,
            final_state= final_state,
            intent_ids=  list(intent_ids),
            asset_ids=   sorted(set(asset_ids)),
            created_at=  created_at,
            reason_code= reason_code,
        )
        receipt.signature = {
            "key_id": self.key_id,
            "alg":    SIGNATURE_ALG,
            "sig":    self.key_manager.sign_object(receipt.to_signing_dict()),
        }
        return receipt


def verify_receipt(receipt: Union[SwapReceipt, Dict[str, Any]], public_key_hex: str) -> bool:
    """True iff the receipt carries a valid ed25519 signature by public_key_hex."""
    try:
        if isinstance(receipt, dict):
            receipt = SwapReceipt.from_dict(receipt)
        signature = receipt.signature or {}
        if signature.get("alg") != SIGNATURE_ALG:
            return False
        data = canonicalize(receipt.to_signing_dict())
    except (KeyError, TypeError, ValueError, AttributeError):
        return False
    return Ed25519KeyManager.verify_detached(data, signature.get("sig"), public_key_hex)
