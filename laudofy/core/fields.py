"""
Capa de acceso a campos cifrados.

Cada atributo sensible de una entidad se declara con un codec que define su
forma canónica en texto (lo que se cifra) y cómo reconstruir el tipo lógico
al leer. `Encrypted[T]` es el valor que cruza la frontera entre la base y el
dominio: se construye con `from_plain()` al escribir y se abre con `reveal()`
al leer.

    PATIENT_FIELDS.write(patient, cipher, {"cpf": "123.456.789-00"})
    PATIENT_FIELDS.read(patient, cipher)["cpf"]   # "12345678900"
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Generic, Iterable, Mapping, TypeVar

from dateutil import parser as date_parser

from laudofy.core.crypto import FieldCipher

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FieldValidationError(ValueError):
    """Valor rechazado por el setter de un campo cifrado."""

    def __init__(self, field: str, value: Any, allowed: Iterable[str] | None = None, reason: str | None = None):
        self.field = field
        self.value = value
        self.allowed = list(allowed) if allowed is not None else None
        if self.allowed is not None:
            message = (
                f"Valor inválido para '{field}': {value!r}. "
                f"Valores permitidos: {', '.join(self.allowed)}"
            )
        else:
            message = f"Valor inválido para '{field}': {value!r}" + (f" ({reason})" if reason else "")
        super().__init__(message)


# ── Codecs ───────────────────────────────────────────


class Codec(Generic[T]):
    """Normaliza un valor a su forma canónica en texto y lo reconstruye al leer."""

    def canonical(self, field: str, value: Any) -> str | None:
        text = str(value).strip()
        return text or None

    def parse(self, field: str, raw: str) -> T:
        return raw  # type: ignore[return-value]


class TextCodec(Codec[str]):
    pass


class DigitsCodec(Codec[str]):
    """Identificadores y teléfonos: solo dígitos."""

    def __init__(self, length: int | None = None):
        self.length = length

    def canonical(self, field: str, value: Any) -> str | None:
        digits = re.sub(r"\D", "", str(value))
        if not digits:
            if str(value).strip():
                raise FieldValidationError(field, value, reason="no contiene dígitos")
            return None
        if self.length and len(digits) != self.length:
            raise FieldValidationError(field, value, reason=f"se esperan {self.length} dígitos")
        return digits


class DateCodec(Codec[date]):
    """Fechas en forma canónica YYYY-MM-DD."""

    def canonical(self, field: str, value: Any) -> str | None:
        if isinstance(value, datetime):
            return value.date().isoformat()
        if isinstance(value, date):
            return value.isoformat()
        text = str(value).strip()
        if not text:
            return None
        try:
            return date_parser.isoparse(text).date().isoformat()
        except ValueError:
            pass
        try:
            return date_parser.parse(text, dayfirst=True).date().isoformat()
        except (ValueError, OverflowError) as exc:
            raise FieldValidationError(field, value, reason="fecha no reconocida") from exc

    def parse(self, field: str, raw: str) -> date:
        try:
            return date.fromisoformat(raw)
        except ValueError:
            # Valores heredados en texto libre ("01/02/1990")
            canonical = self.canonical(field, raw)
            if canonical is None:
                raise FieldValidationError(field, raw, reason="fecha vacía")
            return date.fromisoformat(canonical)


class FloatCodec(Codec[float]):
    def canonical(self, field: str, value: Any) -> str | None:
        if isinstance(value, str):
            value = value.strip().replace(",", ".")
            if not value:
                return None
        try:
            return repr(float(value))
        except (TypeError, ValueError) as exc:
            raise FieldValidationError(field, value, reason="se espera un número") from exc

    def parse(self, field: str, raw: str) -> float:
        return float(raw)


class IntCodec(Codec[int]):
    def canonical(self, field: str, value: Any) -> str | None:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
        try:
            number = float(value)
        except (TypeError, ValueError) as exc:
            raise FieldValidationError(field, value, reason="se espera un entero") from exc
        if not number.is_integer():
            raise FieldValidationError(field, value, reason="se espera un entero")
        return str(int(number))

    def parse(self, field: str, raw: str) -> int:
        return int(raw)


class ChoiceCodec(Codec[str]):
    """Conjunto cerrado de valores; la comparación ignora mayúsculas."""

    def __init__(self, allowed: Iterable[str], *, uppercase: bool = False):
        self.allowed = tuple(allowed)
        self.uppercase = uppercase
        self._lookup = {a.casefold(): a for a in self.allowed}

    def canonical(self, field: str, value: Any) -> str | None:
        text = str(value).strip()
        if self.uppercase:
            text = text.upper()
        match = self._lookup.get(text.casefold())
        if match is None:
            raise FieldValidationError(field, value, self.allowed)
        return match


# ── Valor cifrado ────────────────────────────────────


@dataclass(frozen=True)
class Encrypted(Generic[T]):
    """Texto cifrado de un campo junto con el codec que reconstruye su tipo."""

    stored: str
    codec: Codec[T]
    field: str

    @classmethod
    def from_plain(
        cls, value: Any, *, codec: Codec[T], cipher: FieldCipher, field: str
    ) -> "Encrypted[T] | None":
        if value is None:
            return None
        canonical = codec.canonical(field, value)
        if canonical is None:
            return None
        return cls(cipher.encrypt(canonical), codec, field)

    def reveal(self, cipher: FieldCipher) -> T | None:
        """
        Descifra y parsea. Un valor sin marcador de cifrado se trata como ya
        descifrado y solo se parsea.
        """
        raw = self.stored
        if cipher.is_ciphertext(raw):
            raw = cipher.decrypt(raw, field_name=self.field)
            if cipher.is_ciphertext(raw):
                # El descifrado falló y devolvió el token; no se expone.
                return None
        try:
            return self.codec.parse(self.field, raw)
        except ValueError:
            logger.warning("Valor no parseable en el campo %s", self.field)
            return None


# ── Mapas por entidad ────────────────────────────────


class EncryptedFields:
    """Declaración de los atributos cifrados de una entidad y sus codecs."""

    def __init__(self, **codecs: Codec):
        self.codecs = codecs

    def __contains__(self, name: str) -> bool:
        return name in self.codecs

    def seal(self, cipher: FieldCipher, name: str, value: Any) -> str | None:
        sealed = Encrypted.from_plain(value, codec=self.codecs[name], cipher=cipher, field=name)
        return sealed.stored if sealed else None

    def open(self, cipher: FieldCipher, name: str, stored: str | None) -> Any:
        if stored is None or stored == "":
            return None
        return Encrypted(stored, self.codecs[name], name).reveal(cipher)

    def canonical(self, name: str, value: Any) -> str | None:
        """Forma canónica sin cifrar (para índices ciegos y comparaciones)."""
        return self.codecs[name].canonical(name, value)

    def write(self, entity: Any, cipher: FieldCipher, data: Mapping[str, Any]) -> None:
        """Setter: cifra y asigna los atributos declarados presentes en `data`."""
        for name, value in data.items():
            if name in self.codecs:
                setattr(entity, name, self.seal(cipher, name, value))

    def read(self, entity: Any, cipher: FieldCipher) -> dict[str, Any]:
        """Getter: vista descifrada de todos los atributos declarados."""
        return {
            name: self.open(cipher, name, getattr(entity, name, None))
            for name in self.codecs
        }

    def seal_mapping(self, cipher: FieldCipher, data: Mapping[str, Any]) -> dict[str, Any]:
        """Cifra las claves declaradas de un dict; el resto pasa sin cambios."""
        return {
            k: (self.seal(cipher, k, v) if k in self.codecs else v)
            for k, v in data.items()
        }

    def open_mapping(self, cipher: FieldCipher, data: Mapping[str, Any]) -> dict[str, Any]:
        return {
            k: (self.open(cipher, k, v) if k in self.codecs else v)
            for k, v in data.items()
        }


# ── Dominios cerrados ────────────────────────────────

EXAM_TYPES = ("ECG", "HOLTER", "ERGOMETRIA", "MAPA", "OUTRO")
EXAM_STATUSES = ("Pendente", "Concluído", "Laudo realizado")

PATIENT_FIELDS = EncryptedFields(
    cpf=DigitsCodec(length=11),
    birth_date=DateCodec(),
    address=TextCodec(),
    phone=DigitsCodec(),
)

EXAM_FIELDS = EncryptedFields(
    exam_type=ChoiceCodec(EXAM_TYPES, uppercase=True),
    status=ChoiceCodec(EXAM_STATUSES),
    pr_segment=FloatCodec(),
    heart_rate=FloatCodec(),
    qrs_duration=FloatCodec(),
    qrs_axis=FloatCodec(),
    height=FloatCodec(),
    weight=FloatCodec(),
    age=IntCodec(),
    symptoms=TextCodec(),
    file_url=TextCodec(),
    thumbnail_url=TextCodec(),
)

REPORT_FIELDS = EncryptedFields(
    physician_name=TextCodec(),
    conclusion=TextCodec(),
    original_file_url=TextCodec(),
    signed_file_url=TextCodec(),
    redo_reason=TextCodec(),
    replacement_reason=TextCodec(),
    invalidation_reason=TextCodec(),
    created_by_name=TextCodec(),
    updated_by_name=TextCodec(),
    email_recipient=TextCodec(),
    public_link=TextCodec(),
    access_code=TextCodec(),
)

HISTORY_FIELDS = EncryptedFields(
    user_id=TextCodec(),
    user_name=TextCodec(),
    detail=TextCodec(),
    email_recipient=TextCodec(),
    error_message=TextCodec(),
)
