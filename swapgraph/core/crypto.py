"""
swapgraph/core/crypto.py

Ed25519 signing for receipts and journal entries.

    key.key_id              : short stable id derived from the public key
    key.public_key_hex      : @property, 64-char lowercase hex
    key.sign(data)          : bytes → base64url str, no padding
    key.sign_object(obj)    : JSON value → signature over its RFC 8785 form
    verify_detached(...)    : @staticmethod, needs only the public key hex;
                              returns False on any failure, never raises
"""

import base64
from pathlib import Path
from typing import Any, Optional

from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_pem_private_key,
)

from swapgraph.core.canonical import canonicalize, short_hash


SIGNATURE_ALG = "ed25519"


class Ed25519KeyManager:
    """
    Ed25519 key pair used by the receipt signer and the event journal.

    Construction:
        Ed25519KeyManager.generate()
        Ed25519KeyManager.from_file(path)           PEM (PKCS8) private key
        Ed25519KeyManager.from_private_bytes(seed)  raw 32-byte seed
    """

    def __init__(self, private_key: Ed25519PrivateKey, key_id: Optional[str] = None) -> None:
        self._private_key:    Ed25519PrivateKey = private_key
        self._public_key:     Ed25519PublicKey  = private_key.public_key()
        self._public_key_hex: str = (
            self._public_key
            .public_bytes(Encoding.Raw, PublicFormat.Raw)
            .hex()
        )
        self.key_id: str = key_id or f"key_{short_hash(self._public_key_hex, 16)}"

    # ── Construction ──────────────────────────────────────────

    @classmethod
    def generate(cls, key_id: Optional[str] = None) -> "Ed25519KeyManager":
        return cls(Ed25519PrivateKey.generate(), key_id=key_id)

    @classmethod
    def from_file(cls, path: Path, key_id: Optional[str] = None) -> "Ed25519KeyManager":
        """
        Load a PEM private key.
        Raises FileNotFoundError if path does not exist, ValueError if the
        file is not an Ed25519 key.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Key file not found: {path}")
        try:
            private_key = load_pem_private_key(path.read_bytes(), password=None)
        except ValueError as exc:
            raise ValueError(f"Failed to load Ed25519 key from {path}: {exc}") from exc
        if not isinstance(private_key, Ed25519PrivateKey):
            raise ValueError(f"Key file {path} does not contain an Ed25519 private key")
        return cls(private_key, key_id=key_id)

    @classmethod
    def from_private_bytes(cls, seed: bytes, key_id: Optional[str] = None) -> "Ed25519KeyManager":
        if len(seed) != 32:
            raise ValueError(f"Ed25519 seed must be 32 bytes, got {len(seed)}")
        return cls(Ed25519PrivateKey.from_private_bytes(seed), key_id=key_id)

    # ── Public Key ────────────────────────────────────────────

    @property
    def public_key_hex(self) -> str:
        return self._public_key_hex

    # ── Signing ───────────────────────────────────────────────

    def sign(self, data: bytes) -> str:
        """Sign raw bytes. Returns base64url without '=' padding (86 chars)."""
        raw_sig = self._private_key.sign(data)
        return base64.urlsafe_b64encode(raw_sig).rstrip(b"=").decode("ascii")

    def sign_object(self, obj: Any) -> str:
        """Sign the RFC 8785 canonical bytes of a JSON-primitive value."""
        return self.sign(canonicalize(obj))

    # ── Verification ──────────────────────────────────────────

    def verify(self, data: bytes, signature_b64: str) -> bool:
        return Ed25519KeyManager.verify_detached(data, signature_b64, self._public_key_hex)

    @staticmethod
    def verify_detached(data: bytes, signature_b64: str, public_key_hex: str) -> bool:
        """
        Verify an Ed25519 signature using only a public key hex string.

        True iff the signature is valid. False for ANY failure (wrong key,
        bad encoding, wrong length, tampered data). Never raises.
        """
        try:
            if not isinstance(public_key_hex, str) or len(public_key_hex) != 64:
                return False
            if not isinstance(signature_b64, str) or not signature_b64:
                return False

            pub = Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_key_hex))

            padding    = 4 - len(signature_b64) % 4
            padded_sig = signature_b64 + "=" * (padding % 4)
            raw_sig    = base64.urlsafe_b64decode(padded_sig)
            if len(raw_sig) != 64:
                return False

            pub.verify(raw_sig, data)
            return True
        except Exception:
            return False

    # ── Persistence ───────────────────────────────────────────

    def save(self, path: Path) -> None:
        """Write the private key as PKCS8 PEM, creating parent directories."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        pem = self._private_key.private_bytes(
            encoding=             Encoding.PEM,
            format=               PrivateFormat.PKCS8,
            encryption_algorithm= NoEncryption(),
        )
        path.write_bytes(pem)

    def __repr__(self) -> str:
        return f"Ed25519KeyManager(key_id={self.key_id}, public_key_hex={self._public_key_hex[:16]}...)"
