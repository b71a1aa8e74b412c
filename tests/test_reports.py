"""
Tests del ciclo de vida del laudo: creación, firma, rehecho encadenado,
invalidación, envío por e-mail y generación del PDF en segundo plano.
"""

import asyncio
from datetime import datetime
from uuid import UUID, uuid4

import pytest
from kombu.exceptions import OperationalError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from laudofy.config import get_settings
from laudofy.models.audit_log import AuditAction, AuditStatus
from laudofy.models.financial import FinancialTransaction
from laudofy.models.medical_report import MedicalReport, ReportStatus
from laudofy.services.audit_service import AuditTrailWriter
from laudofy.services.report_document import (
    CeleryPdfDispatcher,
    PdfDispatchError,
    RenderError,
    generate_report_document,
)

from conftest import PDF_BYTES, auth_headers


@pytest.fixture
def exam(make_patient, make_exam):
    async def _make() -> dict:
        patient = await make_patient()
        return await make_exam(patient["id"])

    return _make


async def _create(client, headers, exam_id: str, conclusion: str = "Ritmo sinusal normal.") -> dict:
    response = await client.post(
        "/api/v1/reports", data={"exam_id": exam_id, "conclusion": conclusion}, headers=headers
    )
    assert response.status_code == 201, response.text
    return response.json()


async def _sign(client, headers, report_id: str):
    return await client.post(
        f"/api/v1/reports/{report_id}/sign",
        files={"file": ("assinado.pdf", PDF_BYTES, "application/pdf")},
        headers=headers,
    )


async def _redo(client, headers, report_id: str, reason: str = "wrong conclusion", **extra):
    return await client.post(
        f"/api/v1/reports/{report_id}/redo", json={"reason": reason, **extra}, headers=headers
    )


def _actions(report: dict) -> list[str]:
    return [event["action"] for event in report["history"]]


# ── Creación ─────────────────────────────────────────


async def test_create_starts_as_draft_and_queues_pdf(
    client, admin_headers, physician, physician_headers, exam, dispatcher, db_session, cipher
):
    exam_data = await exam()
    report = await _create(client, physician_headers, exam_data["id"])

    assert report["status"] == ReportStatus.DRAFT.value
    assert report["valid"] is False
    assert report["version"] == 1
    assert report["physician_name"] == physician.name
    assert report["public_link"].endswith(f"/publico/{report['id']}")
    assert len(report["access_code"]) == 4 and report["access_code"].isdigit()
    assert _actions(report) == ["Criação"]
    assert [str(i) for i in dispatcher.dispatched] == [report["id"]]

    stored = await db_session.get(MedicalReport, UUID(report["id"]))
    assert cipher.is_ciphertext(stored.conclusion)
    assert cipher.is_ciphertext(stored.history[0]["user_name"])

    exam_after = await client.get(f"/api/v1/exams/{exam_data['id']}", headers=admin_headers)
    assert exam_after.json()["status"] == "Laudo realizado"


async def test_create_requires_conclusion(client, physician_headers, exam):
    exam_data = await exam()
    response = await client.post(
        "/api/v1/reports", data={"exam_id": exam_data["id"], "conclusion": "   "}, headers=physician_headers
    )
    assert response.status_code == 422


async def test_only_physicians_create_reports(client, technician_headers, exam):
    exam_data = await exam()
    response = await client.post(
        "/api/v1/reports", data={"exam_id": exam_data["id"], "conclusion": "x"}, headers=technician_headers
    )
    assert response.status_code == 403


async def test_create_when_exam_has_valid_report_fails_and_is_audited(
    client, physician_headers, exam, audit_entries
):
    exam_data = await exam()
    report = await _create(client, physician_headers, exam_data["id"])
    assert (await _sign(client, physician_headers, report["id"])).status_code == 200

    response = await client.post(
        "/api/v1/reports",
        data={"exam_id": exam_data["id"], "conclusion": "Outra conclusão"},
        headers=physician_headers,
    )
    assert response.status_code == 409

    entries = await audit_entries(collection="medical_reports")
    assert [(e.action, e.status) for e in entries] == [
        (AuditAction.CREATE, AuditStatus.OK),
        (AuditAction.UPLOAD_SIGNED, AuditStatus.OK),
        (AuditAction.CREATE_FAILED, AuditStatus.FAILED),
    ]


async def test_pdf_dispatch_failure_leaves_report_in_pdf_error(
    client, physician_headers, exam, dispatcher, audit_entries
):
    exam_data = await exam()
    dispatcher.fail = True
    report = await _create(client, physician_headers, exam_data["id"])

    assert report["status"] == ReportStatus.PDF_ERROR.value
    assert _actions(report) == ["Atualização", "Criação"]
    assert report["history"][0]["detail"].startswith("Falha ao enfileirar")

    failed = await audit_entries(collection="medical_reports", status=AuditStatus.FAILED)
    assert [(e.action, e.document_id) for e in failed] == [(AuditAction.UPDATE, report["id"])]
    assert failed[0].after_data == {"status": ReportStatus.PDF_ERROR.value}


@pytest.fixture
def signed_on_create(monkeypatch):
    monkeypatch.setattr(get_settings(), "REPORT_CREATION_FLOW", "signed_on_create")


async def test_signed_on_create_stores_signed_pdf(
    client, physician_headers, exam, storage, db_session, signed_on_create
):
    exam_data = await exam()
    form = {"exam_id": exam_data["id"], "conclusion": "Ritmo sinusal normal."}

    missing = await client.post("/api/v1/reports", data=form, headers=physician_headers)
    assert missing.status_code == 422

    response = await client.post(
        "/api/v1/reports",
        data=form,
        files={"file": ("assinado.pdf", PDF_BYTES, "application/pdf")},
        headers=physician_headers,
    )
    assert response.status_code == 201, response.text
    report = response.json()
    assert report["status"] == ReportStatus.SIGNED.value
    assert report["valid"] is True
    assert report["signed_at"] is not None
    assert report["signed_file_url"] == f"https://cdn.test/{len(storage.uploads)}/assinado.pdf"
    assert {"Criação", "Assinatura", "TransacaoFinanceira"} <= set(_actions(report))

    result = await db_session.execute(
        select(FinancialTransaction).where(FinancialTransaction.report_id == UUID(report["id"]))
    )
    assert len(result.scalars().all()) == 1

    # Ya firmado en la creación: no se vuelve a firmar
    again = await _sign(client, physician_headers, report["id"])
    assert again.status_code == 409


async def test_signed_on_create_redo_yields_draft_to_sign(client, physician_headers, exam, signed_on_create):
    exam_data = await exam()
    created = await client.post(
        "/api/v1/reports",
        data={"exam_id": exam_data["id"], "conclusion": "Ritmo sinusal normal."},
        files={"file": ("assinado.pdf", PDF_BYTES, "application/pdf")},
        headers=physician_headers,
    )
    new = (await _redo(client, physician_headers, created.json()["id"])).json()
    assert new["status"] == ReportStatus.DRAFT.value
    assert new["signed_at"] is None

    signed = await _sign(client, physician_headers, new["id"])
    assert signed.status_code == 200
    assert signed.json()["valid"] is True


async def test_draft_flow_rejects_signed_file_on_create(client, physician_headers, exam, storage):
    exam_data = await exam()
    uploads = len(storage.uploads)
    response = await client.post(
        "/api/v1/reports",
        data={"exam_id": exam_data["id"], "conclusion": "Ritmo sinusal normal."},
        files={"file": ("assinado.pdf", PDF_BYTES, "application/pdf")},
        headers=physician_headers,
    )
    assert response.status_code == 422
    assert len(storage.uploads) == uploads


# ── Firma ────────────────────────────────────────────


async def test_sign_validates_report_and_registers_transaction(
    client, physician_headers, exam, db_session, storage
):
    exam_data = await exam()
    report = await _create(client, physician_headers, exam_data["id"])

    response = await _sign(client, physician_headers, report["id"])
    assert response.status_code == 200
    signed = response.json()
    assert signed["status"] == ReportStatus.SIGNED.value
    assert signed["valid"] is True
    assert signed["signed_at"] is not None
    assert signed["signed_file_url"] == f"https://cdn.test/{len(storage.uploads)}/assinado.pdf"
    assert "Assinatura" in _actions(signed)
    assert "TransacaoFinanceira" in _actions(signed)

    result = await db_session.execute(
        select(FinancialTransaction).where(FinancialTransaction.report_id == UUID(report["id"]))
    )
    assert len(result.scalars().all()) == 1

    again = await _sign(client, physician_headers, report["id"])
    assert again.status_code == 409


async def test_only_responsible_physician_signs(client, physician_headers, other_physician, exam):
    exam_data = await exam()
    report = await _create(client, physician_headers, exam_data["id"])

    response = await _sign(client, auth_headers(other_physician), report["id"])
    assert response.status_code == 403


# ── Rehecho ──────────────────────────────────────────


async def test_redo_links_versions(client, physician_headers, exam, audit_entries):
    exam_data = await exam()
    original = await _create(client, physician_headers, exam_data["id"])
    assert (await _sign(client, physician_headers, original["id"])).status_code == 200

    response = await _redo(client, physician_headers, original["id"], reason="wrong conclusion")
    assert response.status_code == 201
    new = response.json()

    old = (await client.get(f"/api/v1/reports/{original['id']}", headers=physician_headers)).json()
    assert old["valid"] is False
    assert old["status"] == ReportStatus.REDONE.value
    assert old["replacement_report_id"] == new["id"]
    assert old["replacement_reason"] == "wrong conclusion"
    assert old["chain"]["replacement"]["id"] == new["id"]

    assert new["version"] == 2
    assert new["previous_report_id"] == original["id"]
    assert new["redo_reason"] == "wrong conclusion"
    # Sin nueva conclusión se copia la anterior
    assert new["conclusion"] == original["conclusion"]
    assert new["access_code"] != "" and new["public_link"].endswith(new["id"])

    recreate = await audit_entries(action=AuditAction.RECREATE)
    assert len(recreate) == 1
    assert recreate[0].document_id == new["id"]
    assert recreate[0].after_data["replaced"]["id"] == original["id"]


async def test_only_current_version_can_be_redone(client, physician_headers, exam):
    exam_data = await exam()
    original = await _create(client, physician_headers, exam_data["id"])
    assert (await _redo(client, physician_headers, original["id"])).status_code == 201

    response = await _redo(client, physician_headers, original["id"])
    assert response.status_code == 409


async def test_version_chain_after_several_redos(client, physician_headers, exam):
    exam_data = await exam()
    current = await _create(client, physician_headers, exam_data["id"])
    ids = [current["id"]]
    for n in range(3):
        response = await _redo(
            client, physician_headers, current["id"], reason=f"revisão {n + 1}", conclusion=f"Conclusão v{n + 2}"
        )
        current = response.json()
        ids.append(current["id"])

    assert current["version"] == 4

    # La cadena completa se reconstruye desde cualquier versión
    for report_id in (ids[0], ids[2], ids[3]):
        history = (
            await client.get(f"/api/v1/reports/{report_id}/history", headers=physician_headers)
        ).json()
        assert [v["id"] for v in history["versions"]] == ids
        assert [v["version"] for v in history["versions"]] == [1, 2, 3, 4]

    events = history["events"]
    stamps = [datetime.fromisoformat(e["at"]) for e in events]
    assert stamps == sorted(stamps, reverse=True)
    assert sum(1 for e in events if e["action"] == "Refação") == 6


async def test_at_most_one_valid_report_per_exam(client, physician_headers, exam):
    exam_data = await exam()
    first = await _create(client, physician_headers, exam_data["id"])
    assert (await _sign(client, physician_headers, first["id"])).status_code == 200

    second = (await _redo(client, physician_headers, first["id"])).json()
    assert (await _sign(client, physician_headers, second["id"])).status_code == 200

    response = await client.get(
        "/api/v1/reports", params={"exam_id": exam_data["id"], "valid": True}, headers=physician_headers
    )
    assert [r["id"] for r in response.json()["items"]] == [second["id"]]


async def test_concurrent_signatures_leave_one_valid_report(client, physician_headers, exam, db_session):
    exam_data = await exam()
    first = await _create(client, physician_headers, exam_data["id"])
    second = await _create(client, physician_headers, exam_data["id"], conclusion="Bradicardia sinusal.")

    responses = await asyncio.gather(
        _sign(client, physician_headers, first["id"]),
        _sign(client, physician_headers, second["id"]),
    )
    assert sorted(r.status_code for r in responses) == [200, 409]

    result = await db_session.execute(
        select(MedicalReport.id).where(
            MedicalReport.exam_id == UUID(exam_data["id"]),
            MedicalReport.valid.is_(True),
        )
    )
    assert len(result.scalars().all()) == 1


async def test_unique_index_rejects_second_valid_report(client, physician_headers, exam, db_session):
    exam_data = await exam()
    first = await _create(client, physician_headers, exam_data["id"])
    second = await _create(client, physician_headers, exam_data["id"])
    assert (await _sign(client, physician_headers, first["id"])).status_code == 200

    other = await db_session.get(MedicalReport, UUID(second["id"]))
    other.valid = True
    with pytest.raises(IntegrityError):
        await db_session.flush()
    await db_session.rollback()


# ── Invalidación ─────────────────────────────────────


async def test_invalidate_signed_report(client, admin_headers, physician_headers, exam, db_session):
    exam_data = await exam()
    report = await _create(client, physician_headers, exam_data["id"])
    await _sign(client, physician_headers, report["id"])

    response = await client.post(
        f"/api/v1/reports/{report['id']}/invalidate",
        json={"reason": "Exame trocado"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is False
    assert body["status"] == ReportStatus.INVALIDATED.value
    assert body["invalidation_reason"] == "Exame trocado"
    assert _actions(body)[0] == "Cancelamento"

    # La transacción financiera no se toca
    result = await db_session.execute(select(FinancialTransaction))
    assert len(result.scalars().all()) == 1

    again = await client.post(
        f"/api/v1/reports/{report['id']}/invalidate", json={"reason": "de novo"}, headers=admin_headers
    )
    assert again.status_code == 409


# ── Envío por e-mail ─────────────────────────────────


async def test_send_email_without_signed_file_is_rejected(client, physician_headers, exam, mailer):
    exam_data = await exam()
    report = await _create(client, physician_headers, exam_data["id"])

    response = await client.post(f"/api/v1/reports/{report['id']}/send-email", headers=physician_headers)
    assert response.status_code == 422
    assert mailer.reports == []

    after = (await client.get(f"/api/v1/reports/{report['id']}", headers=physician_headers)).json()
    assert "EnvioEmail" not in _actions(after)


async def test_send_email_failure_is_recorded(client, physician_headers, exam, mailer):
    exam_data = await exam()
    report = await _create(client, physician_headers, exam_data["id"])
    await _sign(client, physician_headers, report["id"])

    mailer.fail = True
    response = await client.post(f"/api/v1/reports/{report['id']}/send-email", headers=physician_headers)
    assert response.status_code == 502

    after = (await client.get(f"/api/v1/reports/{report['id']}", headers=physician_headers)).json()
    assert after["status"] == ReportStatus.SEND_ERROR.value
    assert after["email_sent_at"] is None
    failure = after["history"][0]
    assert failure["action"] == "EnvioEmail"
    assert failure["send_status"] == "Falha"
    assert "503" in failure["error_message"]
    assert failure["email_recipient"] == "maria@pacientes.com.br"

    mailer.fail = False
    response = await client.post(f"/api/v1/reports/{report['id']}/send-email", headers=physician_headers)
    assert response.status_code == 200
    sent = response.json()
    assert sent["status"] == ReportStatus.SIGNED.value
    assert sent["email_recipient"] == "maria@pacientes.com.br"
    assert sent["history"][0]["send_status"] == "Enviado"

    message = mailer.reports[0]
    assert message.access_code == report["access_code"]
    assert str(message.report_id) == report["id"]


# ── Generación del PDF ───────────────────────────────


async def test_generate_document_uploads_pdf(client, physician_headers, exam, db_session, cipher, storage, renderer):
    exam_data = await exam()
    report = await _create(client, physician_headers, exam_data["id"])

    status = await generate_report_document(db_session, cipher, storage, renderer, UUID(report["id"]))
    assert status == ReportStatus.ISSUED
    assert renderer.documents[0]["conclusion"] == "Ritmo sinusal normal."
    assert renderer.documents[0]["patient_name"] == "Maria da Silva"

    processing = (
        await client.get(f"/api/v1/reports/{report['id']}/status", headers=physician_headers)
    ).json()
    assert processing["ready"] is True
    assert processing["has_original_file"] is True

    after = (await client.get(f"/api/v1/reports/{report['id']}", headers=physician_headers)).json()
    assert after["original_file_url"].endswith(f"laudo-{report['id']}-v1.pdf")
    assert _actions(after)[0] == "Atualização"


async def test_generate_document_render_failure(
    client, physician_headers, exam, db_session, cipher, storage, renderer, session_factory, audit_entries
):
    exam_data = await exam()
    report = await _create(client, physician_headers, exam_data["id"])
    renderer.fail = True
    audit = AuditTrailWriter(session_factory, attempts=1, retry_delay=0)

    with pytest.raises(RenderError):
        await generate_report_document(db_session, cipher, storage, renderer, UUID(report["id"]), audit)

    processing = (
        await client.get(f"/api/v1/reports/{report['id']}/status", headers=physician_headers)
    ).json()
    assert processing["status"] == ReportStatus.PDF_ERROR.value
    assert processing["ready"] is False

    after = (await client.get(f"/api/v1/reports/{report['id']}", headers=physician_headers)).json()
    assert [e["detail"] for e in after["history"][:2]] == [
        "Erro ao gerar PDF: Renderizador respondió con status 500",
        "PDF do laudo em processamento",
    ]

    failed = await audit_entries(collection="medical_reports", status=AuditStatus.FAILED)
    assert [(e.action, e.document_id) for e in failed] == [(AuditAction.UPDATE, report["id"])]


async def test_generate_document_skips_replaced_reports(
    client, physician_headers, exam, db_session, cipher, storage, renderer
):
    exam_data = await exam()
    report = await _create(client, physician_headers, exam_data["id"])
    await _redo(client, physician_headers, report["id"])

    status = await generate_report_document(db_session, cipher, storage, renderer, UUID(report["id"]))
    assert status is None
    assert renderer.documents == []


async def test_generate_document_does_not_reopen_report_closed_after_load(
    client, physician_headers, exam, db_session, cipher, storage, renderer
):
    exam_data = await exam()
    report = await _create(client, physician_headers, exam_data["id"])

    # La sesión del worker ya tiene el laudo en memoria como Rascunho
    stale = await db_session.get(MedicalReport, UUID(report["id"]))
    assert stale.status == ReportStatus.DRAFT
    assert (await _redo(client, physician_headers, report["id"])).status_code == 201

    status = await generate_report_document(db_session, cipher, storage, renderer, UUID(report["id"]))
    assert status is None
    assert renderer.documents == []

    after = (await client.get(f"/api/v1/reports/{report['id']}", headers=physician_headers)).json()
    assert after["status"] == ReportStatus.REDONE.value
    assert "PDF do laudo em processamento" not in [e["detail"] for e in after["history"]]


# ── Consultas ────────────────────────────────────────


async def test_list_filters_by_encrypted_physician_name(
    client, physician_headers, other_physician, exam, make_exam
):
    exam_data = await exam()
    mine = await _create(client, physician_headers, exam_data["id"])
    other_exam = await make_exam(exam_data["patient_id"])
    await _create(client, auth_headers(other_physician), other_exam["id"])

    response = await client.get(
        "/api/v1/reports", params={"physician_name": "paulo"}, headers=physician_headers
    )
    assert [r["id"] for r in response.json()["items"]] == [mine["id"]]


async def test_patient_reports_include_all_versions(client, admin_headers, physician_headers, exam):
    exam_data = await exam()
    report = await _create(client, physician_headers, exam_data["id"])
    await _redo(client, physician_headers, report["id"])

    response = await client.get(
        f"/api/v1/patients/{exam_data['patient_id']}/reports", headers=admin_headers
    )
    assert sorted(r["version"] for r in response.json()) == [1, 2]


def test_celery_dispatcher_maps_broker_errors(monkeypatch):
    from laudofy.tasks import report_tasks

    def _broker_down(report_id):
        raise OperationalError("Error 111 connecting to localhost:6379")

    monkeypatch.setattr(report_tasks.generate_report_pdf, "delay", _broker_down)
    with pytest.raises(PdfDispatchError):
        CeleryPdfDispatcher().dispatch(uuid4())
