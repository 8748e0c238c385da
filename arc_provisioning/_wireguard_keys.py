# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import base64
import binascii
import os
from typing import Tuple

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.hazmat.primitives.serialization import PublicFormat

from arc_provisioning._errors import WireGuardConfigError


def generate_key_pair() -> Tuple[str, str]:
    """Return base64 private and public keys in the format of wg genkey."""
    private = _clamp(os.urandom(32))
    return base64.b64encode(private).decode('ascii'), _derive_public(private)


def public_key_from_private(private_b64: str) -> str:
    """Derive the public key as wg pubkey does; clamp before deriving."""
    try:
        raw = base64.b64decode(private_b64.strip(), validate=True)
    except binascii.Error as e:
        raise WireGuardConfigError(f"WireGuard private key is not valid base64: {e}")
    if len(raw) != 32:
        raise WireGuardConfigError(f"WireGuard private key must be 32 bytes, got {len(raw)}")
    return _derive_public(_clamp(raw))


def _clamp(raw: bytes) -> bytes:
    clamped = bytearray(raw)
    clamped[0] &= 248
    clamped[31] = (clamped[31] & 127) | 64
    return bytes(clamped)


def _derive_public(private: bytes) -> str:
    key = X25519PrivateKey.from_private_bytes(private)
    public = key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return base64.b64encode(public).decode('ascii')
