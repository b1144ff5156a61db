"""Pytest configuration and fixtures."""

import shutil
import tempfile
from collections.abc import Generator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from lettertrust.config import Settings
from lettertrust.crypto.signature import SignatureManager, fingerprint
from lettertrust.errors import FetchError
from lettertrust.trust.whitelist import build_whitelist_document

FQRN = "example.org"
REPO_URL = "http://stratum1.example.org/cvmfs/example.org"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    try:
        yield Path(tmpdir)
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def override_settings(temp_dir: Path) -> Generator[Settings, None, None]:
    """Provide isolated lettertrust settings scoped to tests."""

    import lettertrust.config as config_module

    original_settings = getattr(config_module, "_settings", None)

    config_dir = temp_dir / "appconfig"
    config_dir.mkdir(parents=True, exist_ok=True)

    settings = config_module.Settings(config_dir=config_dir)
    config_module._settings = settings

    try:
        yield settings
    finally:
        config_module._settings = original_settings


# ---------------------------------------------------------------------------
# Keys and certificates
# ---------------------------------------------------------------------------


def generate_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def make_certificate(
    key: rsa.RSAPrivateKey,
    common_name: str,
    *,
    issuer: x509.Certificate | None = None,
    issuer_key: rsa.RSAPrivateKey | None = None,
    serial: int | None = None,
    not_before: datetime | None = None,
    not_after: datetime | None = None,
    ca: bool = False,
) -> x509.Certificate:
    """Build a certificate, self-signed unless ``issuer`` is given."""
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    start = not_before or datetime.now(UTC) - timedelta(days=1)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer.subject if issuer is not None else subject)
        .public_key(key.public_key())
        .serial_number(serial or x509.random_serial_number())
        .not_valid_before(start)
        .not_valid_after(not_after or start + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
    )
    return builder.sign(issuer_key or key, hashes.SHA256())


def write_private_key(key: rsa.RSAPrivateKey, path: Path, password: str | None = None) -> Path:
    encryption: serialization.KeySerializationEncryption
    if password:
        encryption = serialization.BestAvailableEncryption(password.encode("utf-8"))
    else:
        encryption = serialization.NoEncryption()
    path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            encryption,
        )
    )
    return path


def write_public_key(key: rsa.RSAPrivateKey, path: Path) -> Path:
    path.write_bytes(
        key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )
    return path


def write_certificate(certificate: x509.Certificate, path: Path) -> Path:
    path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    return path


@dataclass
class Identity:
    """Key material for one signer, written to disk."""

    key: rsa.RSAPrivateKey
    certificate: x509.Certificate
    key_path: Path
    certificate_path: Path
    public_key_path: Path

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.certificate)

    def manager(self) -> SignatureManager:
        manager = SignatureManager()
        manager.load_certificate(self.certificate_path)
        manager.load_private_key(self.key_path)
        return manager


@pytest.fixture(scope="session")
def _signer_key() -> rsa.RSAPrivateKey:
    return generate_key()


@pytest.fixture(scope="session")
def _other_key() -> rsa.RSAPrivateKey:
    return generate_key()


@pytest.fixture(scope="session")
def _master_key() -> rsa.RSAPrivateKey:
    return generate_key()


@pytest.fixture(scope="session")
def _ca_key() -> rsa.RSAPrivateKey:
    return generate_key()


def _identity(key: rsa.RSAPrivateKey, name: str, directory: Path) -> Identity:
    directory.mkdir(parents=True, exist_ok=True)
    certificate = make_certificate(key, name)
    return Identity(
        key=key,
        certificate=certificate,
        key_path=write_private_key(key, directory / f"{name}.key"),
        certificate_path=write_certificate(certificate, directory / f"{name}.crt"),
        public_key_path=write_public_key(key, directory / f"{name}.pub"),
    )


@pytest.fixture
def signer(_signer_key: rsa.RSAPrivateKey, temp_dir: Path) -> Identity:
    """Publisher identity (certificate A)."""
    return _identity(_signer_key, "publisher-a", temp_dir / "keys")


@pytest.fixture
def other_signer(_other_key: rsa.RSAPrivateKey, temp_dir: Path) -> Identity:
    """Second publisher identity (certificate B)."""
    return _identity(_other_key, "publisher-b", temp_dir / "keys")


@pytest.fixture
def master(_master_key: rsa.RSAPrivateKey, temp_dir: Path) -> Identity:
    """Repository master key that signs whitelists."""
    return _identity(_master_key, "master", temp_dir / "keys")


@pytest.fixture
def ca(_ca_key: rsa.RSAPrivateKey, temp_dir: Path) -> Identity:
    """Certificate authority for the CA/CRL trust path."""
    directory = temp_dir / "ca"
    directory.mkdir(parents=True, exist_ok=True)
    certificate = make_certificate(_ca_key, "Test Root CA", ca=True)
    return Identity(
        key=_ca_key,
        certificate=certificate,
        key_path=write_private_key(_ca_key, directory / "ca.key"),
        certificate_path=write_certificate(certificate, directory / "ca.crt"),
        public_key_path=write_public_key(_ca_key, directory / "ca.pub"),
    )


# ---------------------------------------------------------------------------
# Whitelists and fetching
# ---------------------------------------------------------------------------


class FakeFetcher:
    """In-memory fetcher; unknown or failing URLs raise ``FetchError``."""

    def __init__(self, documents: dict[str, bytes] | None = None) -> None:
        self.documents = dict(documents or {})
        self.failing: set[str] = set()
        self.calls: list[str] = []
        self.closed = False

    def fetch(self, url: str) -> bytes:
        self.calls.append(url)
        if url in self.failing or url not in self.documents:
            raise FetchError(f"cannot reach {url}")
        return self.documents[url]

    def close(self) -> None:
        self.closed = True


def master_manager(master: Identity) -> SignatureManager:
    manager = SignatureManager()
    manager.load_private_key(master.key_path)
    return manager


def make_whitelist(
    master: Identity,
    fingerprints: list[str],
    *,
    fqrn: str = FQRN,
    issued_at: datetime | None = None,
    validity: timedelta = timedelta(days=30),
) -> bytes:
    """Render a whitelist signed with the repository master key."""
    return build_whitelist_document(
        fqrn,
        fingerprints,
        master_manager(master),
        issued_at=issued_at or datetime.now(UTC).replace(microsecond=0),
        validity=validity,
    )


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()
