"""Asymmetric encryption for artifact passwords stored at rest."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_pem_private_key,
    load_pem_public_key,
)

from vault.exceptions import InternalServerError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

PRIVATE_KEY_FILE = "private.pem"
PUBLIC_KEY_FILE = "public.pem"
_KEY_SIZE = 2048

_OAEP = padding.OAEP(
    mgf=padding.MGF1(algorithm=hashes.SHA256()),
    algorithm=hashes.SHA256(),
    label=None,
)


@dataclass(frozen=True)
class KeyPair:
    """RSA keypair used to seal artifact passwords."""

    private_key: rsa.RSAPrivateKey
    public_key: rsa.RSAPublicKey


def generate_keypair() -> KeyPair:
    """Generate a fresh RSA keypair."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=_KEY_SIZE)
    return KeyPair(private_key=private_key, public_key=private_key.public_key())


def serialize_keypair(keypair: KeyPair, keys_dir: Path) -> None:
    """Write the keypair as PEM files (PKCS8 private key, SubjectPublicKeyInfo public key)."""
    keys_dir.mkdir(parents=True, exist_ok=True)
    private_pem = keypair.private_key.private_bytes(
        Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
    )
    public_pem = keypair.public_key.public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo)
    private_path = keys_dir / PRIVATE_KEY_FILE
    private_path.write_bytes(private_pem)
    private_path.chmod(0o600)
    (keys_dir / PUBLIC_KEY_FILE).write_bytes(public_pem)


def load_or_create_keypair(keys_dir: Path) -> KeyPair:
    """Load the keypair from keys_dir, or create and save a new one."""
    private_path = keys_dir / PRIVATE_KEY_FILE
    public_path = keys_dir / PUBLIC_KEY_FILE
    if private_path.exists():
        private_key = load_pem_private_key(private_path.read_bytes(), password=None)
        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise InternalServerError(f"{private_path} does not hold an RSA private key")
        if public_path.exists():
            public_key = load_pem_public_key(public_path.read_bytes())
            if not isinstance(public_key, rsa.RSAPublicKey):
                raise InternalServerError(f"{public_path} does not hold an RSA public key")
        else:
            public_key = private_key.public_key()
        return KeyPair(private_key=private_key, public_key=public_key)

    logger.info("Generating new password keypair in %s", keys_dir)
    keypair = generate_keypair()
    serialize_keypair(keypair, keys_dir)
    return keypair


def encrypt_value(plaintext: str, public_key: rsa.RSAPublicKey) -> str:
    """Encrypt a short string and return base64 ciphertext."""
    ciphertext = public_key.encrypt(plaintext.encode("utf-8"), _OAEP)
    return base64.b64encode(ciphertext).decode("ascii")


def decrypt_value(ciphertext: str, private_key: rsa.RSAPrivateKey) -> str:
    """Decrypt base64 ciphertext. Raises InternalServerError on failure."""
    try:
        raw = base64.b64decode(ciphertext.encode("ascii"), validate=True)
        return private_key.decrypt(raw, _OAEP).decode("utf-8")
    except ValueError as exc:
        raise InternalServerError("Failed to decrypt artifact password") from exc
