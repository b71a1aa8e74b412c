"""
Historial embebido del laudo.

Cada entrada es un dict JSON; identidad del actor, detalle, destinatario y
mensaje de error se guardan cifrados. Las entradas se agregan reasignando la
lista (para que SQLAlchemy detecte el cambio) y nunca se quitan ni reordenan.
"""

from datetime import datetime, timezone

from laudofy.core.crypto import FieldCipher
from laudofy.core.fields import HISTORY_FIELDS
from laudofy.models.medical_report import HistoryAction, MedicalReport, SendStatus
from laudofy.models.user import User


def history_entry(
    cipher: FieldCipher,
    action: HistoryAction,
    actor: User | None = None,
    *,
    detail: str | None = None,
    version: int | None = None,
    email_recipient: str | None = None,
    send_status: SendStatus | None = None,
    error_message: str | None = None,
) -> dict:
    return {
        "at": datetime.now(timezone.utc).isoformat(timespec="microseconds"),
        "action": action.value,
        "version": version,
        "send_status": send_status.value if send_status else None,
        **HISTORY_FIELDS.seal_mapping(
            cipher,
            {
                "user_id": str(actor.id) if actor else None,
                "user_name": actor.name if actor else None,
                "detail": detail,
                "email_recipient": email_recipient,
                "error_message": error_message,
            },
        ),
    }


def append_history(
    report: MedicalReport,
    cipher: FieldCipher,
    action: HistoryAction,
    actor: User | None = None,
    **fields,
) -> dict:
    entry = history_entry(cipher, action, actor, version=report.version, **fields)
    report.history = [*(report.history or []), entry]
    return entry


def history_view(report: MedicalReport, cipher: FieldCipher) -> list[dict]:
    """Historial descifrado, más reciente primero (empates: último insertado primero)."""
    entries = [
        (entry.get("at") or "", index, HISTORY_FIELDS.open_mapping(cipher, entry))
        for index, entry in enumerate(report.history or [])
    ]
    entries.sort(key=lambda item: (item[0], item[1]), reverse=True)
    return [entry for _, _, entry in entries]
