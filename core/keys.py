"""
core/keys.py -- Server signing key loading and public key export.

The signing key is an RSA private key. Yggdrasil clients fetch the public half
from the server info document (base64 DER SubjectPublicKeyInfo) and use it to
verify signed profile properties.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

import base64
import logging
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

logger = logging.getLogger("lodestone.keys")

_KEY_SIZE = 4096
_PUBLIC_EXPONENT = 65537


def load_signing_key(path: str) -> rsa.RSAPrivateKey:
    """Load the RSA signing key from a PEM file, or generate one if path is empty.

    Raises ValueError if the file holds a key that is not RSA.
    """
    if not path:
        logger.info("Generating ephemeral %d-bit RSA signing key", _KEY_SIZE)
        return rsa.generate_private_key(public_exponent=_PUBLIC_EXPONENT, key_size=_KEY_SIZE)

    key = serialization.load_pem_private_key(Path(path).read_bytes(), password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError(f"Signing key at {path!r} is not an RSA private key")
    logger.info("Signing key loaded from %s", path)
    return key


def public_key_base64(key: rsa.RSAPrivateKey) -> str:
    """Return the public half of key as base64-encoded DER (SubjectPublicKeyInfo)."""
    der = key.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return base64.b64encode(der).decode("ascii")
