"""Private key loading and HTTP Signature request signing for Manta."""

from __future__ import annotations

import base64
from email.utils import formatdate

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from mantabox.core.errors import ConfigError

SIGNED_HEADERS = "date"


def load_private_key(key_material: str | bytes, password: bytes | None = None):
    """
    Parse PEM or OpenSSH private key text.

    Raises:
        ConfigError: If the key cannot be parsed or uses an unsupported algorithm
    """
    data = key_material.encode("utf-8") if isinstance(key_material, str) else key_material
    data = data.strip() + b"\n"
    try:
        if b"OPENSSH PRIVATE KEY" in data:
            key = serialization.load_ssh_private_key(data, password=password)
        else:
            key = serialization.load_pem_private_key(data, password=password)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise ConfigError("Unable to parse private key material") from exc

    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise ConfigError(f"Unsupported private key type: {type(key).__name__}")
    return key


def md5_fingerprint(private_key) -> str:
    """Colon-separated MD5 fingerprint of the public half, as ``ssh-keygen -E md5``."""
    public_blob = private_key.public_key().public_bytes(
        serialization.Encoding.OpenSSH,
        serialization.PublicFormat.OpenSSH,
    )
    raw = base64.b64decode(public_blob.split()[1])
    digest = hashes.Hash(hashes.MD5())
    digest.update(raw)
    return ":".join(f"{byte:02x}" for byte in digest.finalize())


class RequestSigner:
    """Builds ``Date`` and ``Authorization`` headers for a Manta account key."""

    def __init__(self, user: str, key_id: str, private_key):
        self.user = user
        self.key_id = key_id
        self._key = private_key

    @property
    def algorithm(self) -> str:
        if isinstance(self._key, rsa.RSAPrivateKey):
            return "rsa-sha256"
        return "ecdsa-sha256"

    @property
    def key_path(self) -> str:
        return f"/{self.user}/keys/{self.key_id}"

    def sign(self, payload: bytes) -> str:
        if isinstance(self._key, rsa.RSAPrivateKey):
            signature = self._key.sign(payload, padding.PKCS1v15(), hashes.SHA256())
        else:
            signature = self._key.sign(payload, ec.ECDSA(hashes.SHA256()))
        return base64.b64encode(signature).decode("ascii")

    def headers(self, date: str | None = None) -> dict[str, str]:
        date = date or formatdate(usegmt=True)
        signature = self.sign(f"date: {date}".encode("utf-8"))
        authorization = (
            f'Signature keyId="{self.key_path}",algorithm="{self.algorithm}",'
            f'headers="{SIGNED_HEADERS}",signature="{signature}"'
        )
        return {"Date": date, "Authorization": authorization}
