from urllib.parse import parse_qs, urlparse

import pyotp
import pytest

from broker.auth.crypto import KEY_LENGTH, CryptoBox
from broker.auth.models import TotpEnrollment
from broker.auth.totp import TotpState, TotpVault, enrollment_state, is_code_format
from broker.core.errors import InternalError

# aligned to a 30 s step
T = 1_700_000_010


@pytest.fixture
def vault() -> TotpVault:
    return TotpVault(CryptoBox(b"v" * KEY_LENGTH), "Broker Test")


@pytest.fixture
def secret(vault) -> str:
    return vault.generate_secret()


def test_generated_secret_is_160_bits_of_base32(secret):
    assert len(secret) == 32
    assert set(secret) <= set("ABCDEFGHIJKLMNOPQRSTUVWXYZ234567")


class TestVerifyCode:
    def test_current_step(self, vault, secret):
        code = pyotp.TOTP(secret).at(T)
        assert vault.verify_code(secret, code, for_time=T)

    @pytest.mark.parametrize("offset", [-30, 30])
    def test_adjacent_step_accepted(self, vault, secret, offset):
        code = pyotp.TOTP(secret).at(T)
        assert vault.verify_code(secret, code, for_time=T + offset)

    @pytest.mark.parametrize("offset", [-60, 60])
    def test_two_steps_away_rejected(self, vault, secret, offset):
        code = pyotp.TOTP(secret).at(T)
        assert not vault.verify_code(secret, code, for_time=T + offset)

    @pytest.mark.parametrize("code", ["12345", "1234567", "12a456", "", " 123456"])
    def test_malformed_code_is_false(self, vault, secret, code):
        assert not vault.verify_code(secret, code, for_time=T)


def test_is_code_format_rejects_non_ascii_digits():
    assert is_code_format("123456")
    assert not is_code_format("١٢٣٤٥٦")


def test_secret_encrypted_at_rest(vault, secret):
    blob = vault.encrypt_secret(secret)
    assert secret.encode() not in blob
    assert vault.decrypt_secret(blob) == secret


def test_corrupt_ciphertext_is_internal_error(vault, secret):
    blob = bytearray(vault.encrypt_secret(secret))
    blob[-1] ^= 0xFF
    with pytest.raises(InternalError):
        vault.decrypt_secret(bytes(blob))


def test_provisioning_uri(vault):
    uri = vault.provisioning_uri("alice@example.com", "JBSWY3DPEHPK3PXP")
    parsed = urlparse(uri)
    params = parse_qs(parsed.query)
    assert parsed.scheme == "otpauth"
    assert parsed.netloc == "totp"
    assert "alice%40example.com" in parsed.path or "alice@example.com" in parsed.path
    assert params["secret"] == ["JBSWY3DPEHPK3PXP"]
    assert params["issuer"] == ["Broker Test"]


def test_enrollment_qr_is_png(vault, secret):
    png = vault.enrollment_qr_png("alice@example.com", secret)
    assert png.startswith(b"\x89PNG\r\n\x1a\n")
    assert vault.enrollment_qr_data_uri("alice@example.com", secret).startswith("data:image/png;base64,")


def test_enrollment_state():
    assert enrollment_state(None) is TotpState.ABSENT
    assert enrollment_state(TotpEnrollment(user_id="u", secret_ciphertext=b"x", enabled=False)) is TotpState.PENDING
    assert enrollment_state(TotpEnrollment(user_id="u", secret_ciphertext=b"x", enabled=True)) is TotpState.ENABLED
