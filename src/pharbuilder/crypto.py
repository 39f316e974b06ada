"""
Centralized cryptographic operations for PHAR OpenSSL signatures.
"""

from pathlib import Path

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .exceptions import SignatureVerificationError, SigningError
from .models import SignatureAlgorithm

_HASHES: dict[SignatureAlgorithm, type[hashes.HashAlgorithm]] = {
    SignatureAlgorithm.SHA1: hashes.SHA1,
    SignatureAlgorithm.SHA256: hashes.SHA256,
    SignatureAlgorithm.SHA512: hashes.SHA512,
}


def generate_keys() -> tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]:
    """Generates a new 4096-bit RSA key pair."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=4096)
    return private_key, private_key.public_key()


def load_private_key(path: Path) -> rsa.RSAPrivateKey:
    try:
        key = serialization.load_pem_private_key(Path(path).read_bytes(), password=None)
    except (OSError, ValueError, TypeError) as e:
        raise SigningError(f"Cannot load private key from {path}: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise SigningError(f"Private key at {path} is not an RSA key.")
    return key


def public_key_pem(private_key: rsa.RSAPrivateKey) -> bytes:
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def sign_payload(
    payload: bytes, private_key: rsa.RSAPrivateKey, algorithm: SignatureAlgorithm
) -> bytes:
    """Signs a payload with RSA PKCS#1 v1.5, as `openssl_sign` does for PHARs."""
    if not isinstance(payload, bytes) or not payload:
        raise SigningError("Payload must be non-empty bytes.")
    return private_key.sign(payload, padding.PKCS1v15(), _HASHES[algorithm]())


def verify_payload(
    payload: bytes, signature: bytes, public_pem: bytes, algorithm: SignatureAlgorithm
) -> None:
    try:
        public_key = serialization.load_pem_public_key(public_pem)
    except ValueError as e:
        raise SignatureVerificationError(f"Invalid public key: {e}") from e
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise SignatureVerificationError("Public key is not an RSA key.")
    try:
        public_key.verify(signature, payload, padding.PKCS1v15(), _HASHES[algorithm]())
    except InvalidSignature as e:
        raise SignatureVerificationError("OpenSSL signature does not match.") from e


def private_key_pem(private_key: rsa.RSAPrivateKey) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def write_key_pair(out_dir: Path) -> tuple[Path, Path]:
    """Generates a key pair into `out_dir`, refusing to overwrite an existing one."""
    private_path = out_dir / "phar-private.pem"
    public_path = out_dir / "phar-public.pem"
    if private_path.exists() or public_path.exists():
        raise SigningError(f"Key already exists in {out_dir}.")
    out_dir.mkdir(parents=True, exist_ok=True)
    private_key, _ = generate_keys()
    private_path.write_bytes(private_key_pem(private_key))
    private_path.chmod(0o600)
    public_path.write_bytes(public_key_pem(private_key))
    return private_path, public_path
