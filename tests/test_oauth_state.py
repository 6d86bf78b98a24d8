import logging

import pytest

from broker.auth.crypto import KEY_LENGTH, CryptoBox
from broker.auth.oauth_state import OAuthStateCodec, b64url_decode, b64url_encode
from broker.core.errors import InvalidOrTamperedState

# inside the ciphertext of a 13-character challenge
CIPHERTEXT_OFFSET = 20


@pytest.fixture
def codec() -> OAuthStateCodec:
    return OAuthStateCodec(CryptoBox(b"s" * KEY_LENGTH))


def test_state_is_url_safe_and_resumes_challenge(codec):
    state = codec.encode("challenge-abc")
    assert all(c.isalnum() or c in "-_" for c in state)
    assert "challenge-abc" not in state
    assert codec.decode(state) == "challenge-abc"


def test_bit_flip_is_rejected(codec):
    raw = bytearray(b64url_decode(codec.encode("challenge-abc")))
    raw[CIPHERTEXT_OFFSET] ^= 0x80
    with pytest.raises(InvalidOrTamperedState):
        codec.decode(b64url_encode(bytes(raw)))


@pytest.mark.parametrize("state", ["", "!!!", "abc", "a" * 10])
def test_malformed_state_is_rejected(codec, state):
    with pytest.raises(InvalidOrTamperedState):
        codec.decode(state)


def test_state_from_other_key_is_rejected(codec):
    foreign = OAuthStateCodec(CryptoBox(b"t" * KEY_LENGTH)).encode("challenge-abc")
    with pytest.raises(InvalidOrTamperedState):
        codec.decode(foreign)


def test_empty_challenge_does_not_decode(codec):
    with pytest.raises(InvalidOrTamperedState):
        codec.decode(codec.encode(""))


def test_rejection_is_logged_as_warning(codec, caplog):
    with caplog.at_level(logging.WARNING, logger="broker.auth.oauth_state"):
        with pytest.raises(InvalidOrTamperedState):
            codec.decode("garbage")
    assert "possible CSRF probe" in caplog.text


URLSAFE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"


def test_trailing_bits_variant_is_rejected(codec):
    # 41 raw bytes leave two unused bits in the last character
    state = codec.encode("challenge-abc")
    altered = state[:-1] + URLSAFE_ALPHABET[URLSAFE_ALPHABET.index(state[-1]) ^ 1]
    assert altered != state
    with pytest.raises(InvalidOrTamperedState):
        codec.decode(altered)


def test_standard_alphabet_variant_is_rejected(codec):
    state = codec.encode("challenge-abc")
    while "-" not in state and "_" not in state:
        state = codec.encode("challenge-abc")
    with pytest.raises(InvalidOrTamperedState):
        codec.decode(state.replace("-", "+").replace("_", "/"))


def test_decode_round_trips_canonical_text():
    assert b64url_decode(b64url_encode(b"\x00\xffab")) == b"\x00\xffab"
    with pytest.raises(ValueError):
        b64url_decode("AAB")
