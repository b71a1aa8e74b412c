"""
Tests de la capa de acceso a campos cifrados.
"""

from datetime import date
from types import SimpleNamespace

import pytest

from laudofy.core.fields import (
    EXAM_FIELDS,
    EXAM_TYPES,
    PATIENT_FIELDS,
    DateCodec,
    Encrypted,
    FieldValidationError,
    TextCodec,
)


def test_write_normalizes_before_encrypting(cipher):
    patient = SimpleNamespace()
    PATIENT_FIELDS.write(
        patient,
        cipher,
        {"cpf": "123.456.789-00", "birth_date": "17/05/1980", "phone": "(11) 98765-4321"},
    )

    assert patient.cpf != "12345678900"
    assert cipher.is_ciphertext(patient.cpf)
    assert cipher.decrypt(patient.cpf) == "12345678900"
    assert cipher.decrypt(patient.birth_date) == "1980-05-17"
    assert cipher.decrypt(patient.phone) == "11987654321"


def test_read_reconstructs_logical_types(cipher):
    exam = SimpleNamespace()
    EXAM_FIELDS.write(
        exam,
        cipher,
        {"exam_type": " ecg ", "status": "pendente", "heart_rate": "72,5", "age": "43", "symptoms": None},
    )

    view = EXAM_FIELDS.read(exam, cipher)
    assert view["exam_type"] == "ECG"
    assert view["status"] == "Pendente"
    assert view["heart_rate"] == 72.5
    assert view["age"] == 43
    assert view["symptoms"] is None
    # Atributos no escritos se leen como None
    assert view["qrs_axis"] is None


def test_closed_domain_rejects_unknown_value(cipher):
    with pytest.raises(FieldValidationError) as exc_info:
        EXAM_FIELDS.write(SimpleNamespace(), cipher, {"exam_type": "RAIO-X"})

    error = exc_info.value
    assert error.field == "exam_type"
    assert error.value == "RAIO-X"
    assert error.allowed == list(EXAM_TYPES)
    assert "RAIO-X" in str(error)


def test_cpf_with_wrong_length_is_rejected(cipher):
    with pytest.raises(FieldValidationError):
        PATIENT_FIELDS.seal(cipher, "cpf", "123.456")


def test_integer_field_rejects_fraction(cipher):
    with pytest.raises(FieldValidationError):
        EXAM_FIELDS.seal(cipher, "age", 43.5)


def test_getter_is_idempotent_on_plain_values(cipher):
    # Un objeto ya descifrado vuelve a pasar por el getter sin cambios
    assert EXAM_FIELDS.open(cipher, "heart_rate", "72.5") == 72.5
    assert PATIENT_FIELDS.open(cipher, "birth_date", "1980-05-17") == date(1980, 5, 17)
    assert PATIENT_FIELDS.open(cipher, "address", "Rua das Flores") == "Rua das Flores"


def test_blank_values_are_stored_as_null(cipher):
    assert PATIENT_FIELDS.seal(cipher, "address", "   ") is None
    assert PATIENT_FIELDS.seal(cipher, "address", None) is None
    assert PATIENT_FIELDS.open(cipher, "address", "") is None


def test_encrypted_value_object(cipher):
    sealed = Encrypted.from_plain("07/05/1980", codec=DateCodec(), cipher=cipher, field="birth_date")

    assert sealed is not None
    assert sealed.stored != "1980-05-07"
    assert sealed.reveal(cipher) == date(1980, 5, 7)
    assert Encrypted.from_plain(None, codec=TextCodec(), cipher=cipher, field="x") is None


def test_mapping_helpers_only_touch_declared_keys(cipher):
    sealed = PATIENT_FIELDS.seal_mapping(cipher, {"address": "Rua A", "name": "Maria"})
    assert sealed["name"] == "Maria"
    assert cipher.is_ciphertext(sealed["address"])
    assert PATIENT_FIELDS.open_mapping(cipher, sealed) == {"address": "Rua A", "name": "Maria"}


def test_legacy_plaintext_dates_are_read(cipher):
    # Registros antiguos guardaron la fecha tal como se tipeó
    assert PATIENT_FIELDS.open(cipher, "birth_date", "01/02/1990") == date(1990, 2, 1)
    assert PATIENT_FIELDS.open(cipher, "birth_date", "no es fecha") is None
