"""
Búsqueda aproximada sobre columnas cifradas.

El cifrado no es determinístico, así que la base no puede filtrar ni indexar
estas columnas. Este adaptador carga los candidatos, descifra la columna en
memoria y aplica el predicado sin distinguir mayúsculas. Costo: O(n)
descifrados por consulta.

El llamador acota el conjunto de candidatos con filtros en claro antes de
invocarlo (`within`); si aun así supera ENCRYPTED_SEARCH_MAX_CANDIDATES se
rechaza la consulta con 422. Varios filtros se combinan intersectando los
conjuntos de IDs resultantes. Las estadísticas sobre columnas cifradas usan
el mismo recorrido acotado (`tally_encrypted`).
"""

import logging
from collections import Counter
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from laudofy.config import get_settings
from laudofy.core.crypto import FieldCipher
from laudofy.core.exceptions import ValidationException
from laudofy.core.fields import EncryptedFields

logger = logging.getLogger(__name__)


async def decrypt_column(
    db: AsyncSession,
    cipher: FieldCipher,
    column: InstrumentedAttribute,
    *,
    fields: EncryptedFields,
    within: Select | None = None,
    max_candidates: int | None = None,
) -> dict[UUID, Any]:
    """
    Valor descifrado de la columna por ID, solo para filas con valor. Rechaza
    con 422 si los candidatos superan el máximo configurado.
    """
    model = column.class_
    name = column.key
    limit = max_candidates if max_candidates is not None else get_settings().ENCRYPTED_SEARCH_MAX_CANDIDATES

    stmt = select(model.id, column).where(column.is_not(None))
    if within is not None:
        stmt = stmt.where(model.id.in_(within))

    count_result = await db.execute(select(func.count()).select_from(stmt.subquery()))
    candidates = count_result.scalar() or 0
    if candidates > limit:
        raise ValidationException(
            f"La consulta sobre '{name}' abarca {candidates} registros (máximo {limit}). "
            "Agregue filtros adicionales."
        )

    values: dict[UUID, Any] = {}
    result = await db.execute(stmt)
    for row_id, stored in result.all():
        value = fields.open(cipher, name, stored)
        if value is not None:
            values[row_id] = value
    return values


async def match_encrypted(
    db: AsyncSession,
    cipher: FieldCipher,
    column: InstrumentedAttribute,
    term: str,
    *,
    fields: EncryptedFields,
    within: Select | None = None,
    exact: bool = False,
    max_candidates: int | None = None,
) -> set[UUID]:
    """
    IDs de las filas cuya columna cifrada contiene `term` (o es igual, con
    `exact=True`). `within` es un SELECT de IDs que acota los candidatos.
    """
    values = await decrypt_column(
        db, cipher, column, fields=fields, within=within, max_candidates=max_candidates
    )
    needle = term.strip().casefold()
    matches: set[UUID] = set()
    for row_id, value in values.items():
        haystack = str(value).casefold()
        if (haystack == needle) if exact else (needle in haystack):
            matches.add(row_id)

    logger.debug(
        "Búsqueda cifrada %s.%s: %d/%d coincidencias",
        column.class_.__name__, column.key, len(matches), len(values),
    )
    return matches


async def tally_encrypted(
    db: AsyncSession,
    cipher: FieldCipher,
    column: InstrumentedAttribute,
    *,
    fields: EncryptedFields,
    within: Select | None = None,
    max_candidates: int | None = None,
) -> Counter:
    """Conteo por valor descifrado (para estadísticas sobre columnas cifradas)."""
    values = await decrypt_column(
        db, cipher, column, fields=fields, within=within, max_candidates=max_candidates
    )
    return Counter(values.values())


def intersect_ids(current: set[UUID] | None, matches: Iterable[UUID]) -> set[UUID]:
    """Conjunción de filtros: None significa 'sin filtrar todavía'."""
    matches = set(matches)
    return matches if current is None else current & matches
