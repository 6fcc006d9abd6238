"""
Proof of Action

Envelope canonicalisation, hashing, signing and the append-only proof ledger.
"""

from .signer import Signer, HmacSigner, Ed25519Signer, UnsignedSigner, get_signer
from .ledger import ProofLedger, canonical_envelope, canonical_bytes, sha256_hex

__all__ = [
    "Signer",
    "HmacSigner",
    "Ed25519Signer",
    "UnsignedSigner",
    "get_signer",
    "ProofLedger",
    "canonical_envelope",
    "canonical_bytes",
    "sha256_hex",
]
