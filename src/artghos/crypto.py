"""
Centralized cryptographic operations for artghos bundles.
"""

from collections.abc import Mapping
import enum
import os
from pathlib import Path
import tomllib

from attrs import define
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

from .exceptions import IntegrityError
from .models import Envelope, LegacyPayload, SignedEnvelope
from .telemetry import logger

SIGNING_KEY_ENV_VAR = "ARTGHOS_SIGNING_KEY"
DEFAULT_KEY_FILE = Path(".artghos") / "signing-key.toml"
MIN_KEY_LENGTH = 32
DEVELOPMENT_FALLBACK_KEY = "artghos-development-signing-key-not-for-distribution"


class KeySource(enum.Enum):
    ENVIRONMENT = "environment"
    KEY_FILE = "key_file"
    FALLBACK = "fallback"


@define(frozen=True, slots=True, repr=False)
class SigningKey:
    value: bytes
    source: KeySource

    def __repr__(self) -> str:
        return f"SigningKey(source={self.source.value})"


def _key_from_file(key_file: Path) -> str | None:
    if not key_file.is_file():
        return None
    try:
        with key_file.open("rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning("Ignoring unreadable signing key file", path=str(key_file), error=str(e))
        return None

    key = data.get("key")
    signing_table = data.get("signing")
    if key is None and isinstance(signing_table, dict):
        key = signing_table.get("key")
    if not isinstance(key, str):
        logger.warning("Signing key file has no 'key' string", path=str(key_file))
        return None
    return key


def resolve_signing_key(
    key_file: Path | None = None, environ: Mapping[str, str] | None = None
) -> SigningKey:
    """
    Resolves the HMAC signing key. First match wins: the environment, then
    the project key file, then the development fallback (always warned about).
    """
    environ = os.environ if environ is None else environ

    env_key = environ.get(SIGNING_KEY_ENV_VAR)
    if env_key:
        if len(env_key) >= MIN_KEY_LENGTH:
            return SigningKey(value=env_key.encode("utf-8"), source=KeySource.ENVIRONMENT)
        logger.warning(
            "Ignoring signing key from environment: too short",
            variable=SIGNING_KEY_ENV_VAR,
            min_length=MIN_KEY_LENGTH,
        )

    file_path = key_file or DEFAULT_KEY_FILE
    file_key = _key_from_file(file_path)
    if file_key is not None:
        if len(file_key) >= MIN_KEY_LENGTH:
            return SigningKey(value=file_key.encode("utf-8"), source=KeySource.KEY_FILE)
        logger.warning(
            "Ignoring signing key file: key too short",
            path=str(file_path),
            min_length=MIN_KEY_LENGTH,
        )

    logger.warning(
        "⚠️  Using the built-in development signing key. Bundles signed with it "
        f"are not trustworthy; set {SIGNING_KEY_ENV_VAR} or create {DEFAULT_KEY_FILE}.",
    )
    return SigningKey(value=DEVELOPMENT_FALLBACK_KEY.encode("utf-8"), source=KeySource.FALLBACK)


def _key_bytes(key: SigningKey | bytes | str) -> bytes:
    if isinstance(key, SigningKey):
        return key.value
    if isinstance(key, str):
        return key.encode("utf-8")
    return key


def _hmac(data: str, key: SigningKey | bytes | str) -> hmac.HMAC:
    h = hmac.HMAC(_key_bytes(key), hashes.SHA256())
    h.update(data.encode("utf-8"))
    return h


def sign_payload(data: str, key: SigningKey | bytes | str) -> str:
    """Signs the exact serialized tree text with HMAC-SHA256, hex-encoded."""
    return _hmac(data, key).finalize().hex()


def verify_payload(data: str, signature: str, key: SigningKey | bytes | str) -> bool:
    """Recomputes the signature and compares it in constant time."""
    try:
        expected = bytes.fromhex(signature)
    except ValueError:
        return False
    try:
        _hmac(data, key).verify(expected)
    except InvalidSignature:
        return False
    return True


def seal(serialized_tree: str, key: SigningKey | bytes | str) -> SignedEnvelope:
    return SignedEnvelope(data=serialized_tree, signature=sign_payload(serialized_tree, key))


def open_envelope(
    envelope: Envelope,
    key: SigningKey | bytes | str | None = None,
    *,
    accept_legacy: bool = False,
    accept_invalid_signature: bool = False,
    key_file: Path | None = None,
) -> str:
    """
    Applies the integrity policy to a parsed envelope and returns the
    serialized tree text that may be decoded.
    """
    if isinstance(envelope, LegacyPayload):
        if not accept_legacy:
            raise IntegrityError(
                "Bundle is unsigned (legacy format); refusing to open it without an override."
            )
        logger.warning("⚠️  Override: opening an unsigned legacy bundle")
        return envelope.serialized_tree

    if not envelope.signature:
        if not accept_invalid_signature:
            raise IntegrityError("Bundle has no signature present.")
        logger.warning("⚠️  Override: opening a bundle with no signature present")
        return envelope.data

    signing_key = key if key is not None else resolve_signing_key(key_file)
    if not verify_payload(envelope.data, envelope.signature, signing_key):
        if not accept_invalid_signature:
            raise IntegrityError(
                "Bundle signature present but invalid: the bundle was modified "
                "or signed with a different key."
            )
        logger.warning("⚠️  Override: opening a bundle whose signature is invalid")
    return envelope.data
