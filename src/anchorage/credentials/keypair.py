# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/credentials/keypair.py

from __future__ import annotations

import base64
import hashlib
import io
import logging
from dataclasses import dataclass
from pathlib import Path

import paramiko

from anchorage.utils.files import write_secret

log = logging.getLogger("anchorage")


@dataclass(frozen=True)
class KeyPair:
    """
    SSH key pair for the instance's login user.

    private_material is the PEM text and is only ever consumed (written to the
    outputs directory, handed to the SSH client); it is never derived again.
    """
    private_material: str
    public_material: str          # "ssh-rsa AAAA... comment"
    fingerprint: str              # "SHA256:..."

    def pkey(self) -> paramiko.PKey:
        return load_private_key(self.private_material)


def _fingerprint(key: paramiko.PKey) -> str:
    digest = hashlib.sha256(key.asbytes()).digest()
    return "SHA256:" + base64.b64encode(digest).decode().rstrip("=")


def _from_pkey(key: paramiko.PKey, comment: str) -> KeyPair:
    buf = io.StringIO()
    key.write_private_key(buf)
    public = f"{key.get_name()} {key.get_base64()}"
    if comment:
        public += f" {comment}"
    return KeyPair(
        private_material=buf.getvalue(),
        public_material=public,
        fingerprint=_fingerprint(key),
    )


def generate_key_pair(bits: int = 4096, comment: str = "") -> KeyPair:
    """Create a fresh RSA key pair. Pure: touches neither disk nor network."""
    return _from_pkey(paramiko.RSAKey.generate(bits), comment)


def load_private_key(pem: str) -> paramiko.PKey:
    """
    Parse PEM text into a paramiko key, trying RSA first (what we generate)
    and then the other formats a user might have supplied.
    """
    last: Exception | None = None
    for key_cls in (paramiko.RSAKey, paramiko.Ed25519Key, paramiko.ECDSAKey):
        try:
            return key_cls.from_private_key(io.StringIO(pem))
        except paramiko.SSHException as e:
            last = e
    raise ValueError(f"Unsupported private key format: {last}")


def load_or_generate(private_path: Path, *, bits: int = 4096, comment: str = "") -> KeyPair:
    """
    Return the deployment's key pair, generating it on first use.

    The private key lives at private_path (mode 0600) and the public key next
    to it with a .pub suffix. Re-runs reuse the stored key so the key already
    registered with the provider keeps matching.
    """
    private_path = Path(private_path)
    if private_path.is_file():
        log.debug("[keypair] Reusing %s", private_path)
        key = load_private_key(private_path.read_text())
        return _from_pkey(key, comment)

    log.info("[keypair] Generating %d-bit RSA key pair", bits)
    pair = generate_key_pair(bits, comment)
    write_secret(private_path, pair.private_material)
    private_path.with_suffix(".pub").write_text(pair.public_material + "\n")
    return pair


def delete_key_files(private_path: Path) -> None:
    for p in (Path(private_path), Path(private_path).with_suffix(".pub")):
        if p.exists():
            p.unlink()
