"""Tests for key resolution, signing and the envelope integrity policy."""

import hashlib
import hmac
from pathlib import Path

import pytest
from structlog.testing import capture_logs

from artghos.crypto import (
    DEVELOPMENT_FALLBACK_KEY,
    SIGNING_KEY_ENV_VAR,
    KeySource,
    open_envelope,
    resolve_signing_key,
    seal,
    sign_payload,
    verify_payload,
)
from artghos.exceptions import IntegrityError
from artghos.models import LegacyPayload, SignedEnvelope

ENV_KEY = "environment-key-0123456789abcdefghijkl"
FILE_KEY = "key-file-value-0123456789abcdefghijklm"
DATA = '{"files":{"a.txt":"aGVsbG8="},"metadata":{"created":"t","fileCount":1,"packageName":"demo"}}'


def _write_key_file(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body)
    return path


def _warnings(logs: list[dict]) -> list[str]:
    return [entry["event"] for entry in logs if entry["log_level"] == "warning"]


def test_sign_payload_matches_hmac_sha256() -> None:
    """Tests that the signature is the hex HMAC-SHA256 of the exact data bytes."""
    expected = hmac.new(ENV_KEY.encode(), DATA.encode(), hashlib.sha256).hexdigest()
    assert sign_payload(DATA, ENV_KEY) == expected


def test_sign_payload_is_deterministic() -> None:
    assert sign_payload(DATA, ENV_KEY) == sign_payload(DATA, ENV_KEY)
    assert sign_payload(DATA, ENV_KEY) != sign_payload(DATA, FILE_KEY)


def test_verify_payload_accepts_valid_signature() -> None:
    envelope = seal(DATA, ENV_KEY)
    assert verify_payload(envelope.data, envelope.signature, ENV_KEY)


@pytest.mark.parametrize("position", [0, 10, len(DATA) // 2, len(DATA) - 1])
def test_verify_payload_detects_single_byte_change(position: int) -> None:
    """Tests that flipping any single character of the signed data breaks verification."""
    signature = sign_payload(DATA, ENV_KEY)
    flipped = chr(ord(DATA[position]) ^ 0x01)
    tampered = DATA[:position] + flipped + DATA[position + 1 :]
    assert not verify_payload(tampered, signature, ENV_KEY)


@pytest.mark.parametrize("signature", ["", "zz-not-hex", "abcd"])
def test_verify_payload_rejects_malformed_signatures(signature: str) -> None:
    assert not verify_payload(DATA, signature, ENV_KEY)


def test_key_resolution_order(tmp_path: Path) -> None:
    """Tests environment -> key file -> fallback, first match wins."""
    key_file = _write_key_file(tmp_path / "signing-key.toml", f'key = "{FILE_KEY}"\n')

    from_env = resolve_signing_key(key_file, environ={SIGNING_KEY_ENV_VAR: ENV_KEY})
    assert from_env.source is KeySource.ENVIRONMENT
    assert from_env.value == ENV_KEY.encode()

    from_file = resolve_signing_key(key_file, environ={})
    assert from_file.source is KeySource.KEY_FILE
    assert from_file.value == FILE_KEY.encode()

    with capture_logs() as logs:
        fallback = resolve_signing_key(tmp_path / "absent.toml", environ={})
    assert fallback.source is KeySource.FALLBACK
    assert fallback.value == DEVELOPMENT_FALLBACK_KEY.encode()
    assert any("development signing key" in event for event in _warnings(logs))


def test_fallback_warns_every_time(tmp_path: Path) -> None:
    """Tests that every use of the fallback key is warned about."""
    with capture_logs() as logs:
        resolve_signing_key(tmp_path / "absent.toml", environ={})
        resolve_signing_key(tmp_path / "absent.toml", environ={})
    assert sum("development signing key" in event for event in _warnings(logs)) == 2


def test_short_environment_key_is_ignored(tmp_path: Path) -> None:
    """Tests that a too-short environment key falls through to the key file."""
    key_file = _write_key_file(tmp_path / "signing-key.toml", f'key = "{FILE_KEY}"\n')
    with capture_logs() as logs:
        key = resolve_signing_key(key_file, environ={SIGNING_KEY_ENV_VAR: "short"})
    assert key.source is KeySource.KEY_FILE
    assert any("too short" in event for event in _warnings(logs))


def test_key_file_signing_table(tmp_path: Path) -> None:
    key_file = _write_key_file(tmp_path / "k.toml", f'[signing]\nkey = "{FILE_KEY}"\n')
    assert resolve_signing_key(key_file, environ={}).source is KeySource.KEY_FILE


@pytest.mark.parametrize("body", ['key = "too-short"\n', "key = [not toml", "other = 1\n"])
def test_unusable_key_file_falls_back(tmp_path: Path, body: str) -> None:
    """Tests that unusable key files fall back to the development key."""
    key_file = _write_key_file(tmp_path / "k.toml", body)
    assert resolve_signing_key(key_file, environ={}).source is KeySource.FALLBACK


def test_default_key_file_location(isolated_workdir: Path) -> None:
    """Tests that the project key file is found relative to the working directory."""
    _write_key_file(isolated_workdir / ".artghos" / "signing-key.toml", f'key = "{FILE_KEY}"\n')
    assert resolve_signing_key(environ={}).source is KeySource.KEY_FILE


def test_repr_hides_key_material() -> None:
    key = resolve_signing_key(environ={SIGNING_KEY_ENV_VAR: ENV_KEY})
    assert ENV_KEY not in repr(key)


def test_open_envelope_valid() -> None:
    assert open_envelope(seal(DATA, ENV_KEY), ENV_KEY) == DATA


def test_open_envelope_invalid_signature() -> None:
    """Tests that a mismatched signature raises IntegrityError."""
    envelope = SignedEnvelope(data=DATA, signature=sign_payload(DATA, FILE_KEY))
    with pytest.raises(IntegrityError, match="signature present but invalid"):
        open_envelope(envelope, ENV_KEY)


def test_open_envelope_invalid_signature_override() -> None:
    envelope = SignedEnvelope(data=DATA, signature=sign_payload(DATA, FILE_KEY))
    with capture_logs() as logs:
        assert open_envelope(envelope, ENV_KEY, accept_invalid_signature=True) == DATA
    assert any("signature is invalid" in event for event in _warnings(logs))


def test_open_envelope_missing_signature() -> None:
    """Tests that an empty signature raises IntegrityError."""
    with pytest.raises(IntegrityError, match="no signature present"):
        open_envelope(SignedEnvelope(data=DATA, signature=""), ENV_KEY)


def test_open_envelope_legacy_rejected_by_default() -> None:
    """Tests that legacy payloads need an explicit override."""
    with pytest.raises(IntegrityError, match="unsigned \\(legacy format\\)"):
        open_envelope(LegacyPayload(serialized_tree=DATA))


def test_open_envelope_legacy_override() -> None:
    with capture_logs() as logs:
        assert open_envelope(LegacyPayload(serialized_tree=DATA), accept_legacy=True) == DATA
    assert any("legacy" in event for event in _warnings(logs))


def test_open_envelope_resolves_key_from_environment(signing_key: str) -> None:
    assert open_envelope(seal(DATA, signing_key)) == DATA
