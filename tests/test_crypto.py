"""
Tests del cifrado de campos: Fernet no determinístico, rotación e índice ciego.
"""

import logging

import pytest
from cryptography.fernet import Fernet

from laudofy.config import FERNET_KEY_PLACEHOLDER
from laudofy.core.crypto import CipherConfig, CipherConfigError, FieldCipher


@pytest.fixture
def key() -> str:
    return Fernet.generate_key().decode()


def test_encrypt_is_not_deterministic(key):
    cipher = FieldCipher(CipherConfig(key=key))
    first = cipher.encrypt("12345678900")
    second = cipher.encrypt("12345678900")

    assert first != second
    assert cipher.is_ciphertext(first)
    assert cipher.decrypt(first) == cipher.decrypt(second) == "12345678900"


def test_decrypt_invalid_token_returns_input(key, caplog):
    cipher = FieldCipher(CipherConfig(key=key))

    with caplog.at_level(logging.WARNING):
        assert cipher.decrypt("texto legado", field_name="address") == "texto legado"
    assert "address" in caplog.text


def test_decrypt_empty_value_passes_through(key):
    cipher = FieldCipher(CipherConfig(key=key))
    assert cipher.decrypt("") == ""


def test_previous_keys_still_decrypt_after_rotation(key):
    old = FieldCipher(CipherConfig(key=key))
    token = old.encrypt("Rua das Flores, 100")

    new_key = Fernet.generate_key().decode()
    rotated = FieldCipher(CipherConfig(key=new_key, previous_keys=(key,)))

    assert rotated.decrypt(token) == "Rua das Flores, 100"
    re_encrypted = rotated.rotate(token)
    assert FieldCipher(CipherConfig(key=new_key)).decrypt(re_encrypted) == "Rua das Flores, 100"


def test_token_from_unknown_key_is_not_decrypted(key):
    token = FieldCipher(CipherConfig(key=Fernet.generate_key().decode())).encrypt("segredo")
    cipher = FieldCipher(CipherConfig(key=key))
    assert cipher.decrypt(token) == token


def test_blind_index_is_deterministic_and_keyed(key):
    cipher = FieldCipher(CipherConfig(key=key, blind_index_key="indice-a"))
    other = FieldCipher(CipherConfig(key=key, blind_index_key="indice-b"))

    assert cipher.blind_index("12345678900") == cipher.blind_index("12345678900")
    assert cipher.blind_index("12345678900") != cipher.blind_index("12345678901")
    assert cipher.blind_index("12345678900") != other.blind_index("12345678900")


@pytest.mark.parametrize("bad_key", ["", FERNET_KEY_PLACEHOLDER, "no-es-base64"])
def test_missing_or_invalid_key_fails_at_construction(bad_key):
    with pytest.raises(CipherConfigError):
        FieldCipher(CipherConfig(key=bad_key))
