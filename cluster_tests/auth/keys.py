"""
Signing key providers for the test identity.

The file-backed provider lets every test process of a run share one RSA
keypair, so tokens minted by one process validate against the JWKS that
another process published to the mock identity provider.
"""

import fcntl
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from cluster_tests.auth.exceptions import KeyGenError
from cluster_tests.config import get_env
from cluster_tests.logging_config import configure_module_logging

logger = configure_module_logging("keys")

DEFAULT_KEY_PATH = "/tmp/cluster-tests-dynamic-keys.pem"
KEY_FILE_ENV_VAR = "CLUSTER_TESTS_KEY_FILE"
KEY_SIZE = 2048


def generate_rsa_key(bits: int = KEY_SIZE) -> rsa.RSAPrivateKey:
    """Generate a new RSA private key."""
    try:
        return rsa.generate_private_key(public_exponent=65537, key_size=bits)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise KeyGenError(f"Failed to generate RSA key: {e}") from e


def private_key_to_pem(key: rsa.RSAPrivateKey) -> bytes:
    """Serialize as PKCS#1 ``RSA PRIVATE KEY`` PEM."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def private_key_from_pem(data: bytes) -> rsa.RSAPrivateKey:
    """Load an unencrypted RSA private key (PKCS#1 or PKCS#8 PEM)."""
    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyGenError(f"Invalid private key PEM: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyGenError(f"Expected an RSA private key, got {type(key).__name__}")
    return key


class KeyProvider(ABC):
    """Source of the issuer's signing key."""

    @abstractmethod
    def get_or_create(self) -> rsa.RSAPrivateKey:
        """Return the signing key, creating it on first use."""
        pass


class EphemeralKeyProvider(KeyProvider):
    """Fresh in-memory keypair, created on first use and kept per instance."""

    def __init__(self, bits: int = KEY_SIZE):
        self.bits = bits
        self._key: Optional[rsa.RSAPrivateKey] = None
        self._lock = threading.Lock()

    def get_or_create(self) -> rsa.RSAPrivateKey:
        with self._lock:
            if self._key is None:
                self._key = generate_rsa_key(self.bits)
            return self._key


class FileKeyProvider(KeyProvider):
    """
    Keypair persisted to a PEM file shared by all processes of a test run.

    Within a process the first call loads or generates the key exactly once.
    Across processes an exclusive ``flock`` on ``<path>.lock`` serializes the
    load-or-generate step, and a new key is written to a temp file and
    renamed into place, so readers never see a partial file.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None, bits: int = KEY_SIZE):
        self.path = Path(path or get_env(KEY_FILE_ENV_VAR) or DEFAULT_KEY_PATH)
        self.bits = bits
        self._key: Optional[rsa.RSAPrivateKey] = None
        self._lock = threading.Lock()

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    def get_or_create(self) -> rsa.RSAPrivateKey:
        with self._lock:
            if self._key is None:
                self._key = self._load_or_generate()
            return self._key

    def _load_or_generate(self) -> rsa.RSAPrivateKey:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.lock_path, "a") as lock_file:
                fcntl.flock(lock_file, fcntl.LOCK_EX)
                try:
                    if self.path.exists():
                        logger.info(f"Loading signing key from {self.path}")
                        return private_key_from_pem(self.path.read_bytes())

                    logger.info(f"Generating signing key at {self.path}")
                    key = generate_rsa_key(self.bits)
                    self._write(private_key_to_pem(key))
                    return key
                finally:
                    fcntl.flock(lock_file, fcntl.LOCK_UN)
        except OSError as e:
            raise KeyGenError(f"Cannot access key file {self.path}: {e}") from e

    def _write(self, pem: bytes) -> None:
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.path.parent), prefix=f".{self.path.name}."
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(pem)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


_default_provider: Optional[FileKeyProvider] = None
_default_provider_lock = threading.Lock()


def default_key_provider() -> FileKeyProvider:
    """Process-wide file-backed provider."""
    global _default_provider
    with _default_provider_lock:
        if _default_provider is None:
            _default_provider = FileKeyProvider()
        return _default_provider
