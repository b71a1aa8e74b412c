"""
Tests financieros: reparto médico/clínica, transacción única por laudo
firmado, estado de pago, reporte por período, fatura mensal y dashboard.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from laudofy.core.exceptions import ValidationException
from laudofy.models.audit_log import AuditAction
from laudofy.models.medical_report import MedicalReport
from laudofy.services.financial_service import ensure_transaction, month_bounds, resolve_period, split_value

from conftest import PDF_BYTES, auth_headers


async def _signed_report(client, physician_headers, make_patient, make_exam, patient_id=None, **exam_fields) -> dict:
    if patient_id is None:
        patient_id = (await make_patient())["id"]
    exam = await make_exam(patient_id, **exam_fields)
    created = await client.post(
        "/api/v1/reports",
        data={"exam_id": exam["id"], "conclusion": "Sem alterações."},
        headers=physician_headers,
    )
    response = await client.post(
        f"/api/v1/reports/{created.json()['id']}/sign",
        files={"file": ("assinado.pdf", PDF_BYTES, "application/pdf")},
        headers=physician_headers,
    )
    assert response.status_code == 200, response.text
    return response.json()


async def _configure(client, admin_headers, physician_id, prices, commission) -> dict:
    response = await client.post(
        "/api/v1/financial/configs",
        json={
            "physician_id": str(physician_id),
            "prices_by_exam_type": prices,
            "commission_percent": commission,
        },
        headers=admin_headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.parametrize(
    "base,commission,expected",
    [
        ("100", "30", ("30.00", "70.00")),
        ("80", "40", ("32.00", "48.00")),
        ("10", "33.33", ("3.33", "6.67")),
        ("0", "30", ("0.00", "0.00")),
    ],
)
def test_split_value(base, commission, expected):
    physician, clinic = split_value(Decimal(base), Decimal(commission))
    assert (physician, clinic) == (Decimal(expected[0]), Decimal(expected[1]))
    assert physician + clinic == Decimal(base)


def test_resolve_period():
    wednesday = date(2026, 10, 14)
    assert resolve_period("dia", None, None, today=wednesday) == ("dia", wednesday, wednesday)
    assert resolve_period("semana", None, None, today=wednesday) == ("semana", date(2026, 10, 12), wednesday)
    assert resolve_period(None, None, None, today=wednesday) == ("mes", date(2026, 10, 1), wednesday)
    assert resolve_period("dia", date(2026, 1, 1), date(2026, 1, 31)) == (
        "intervalo", date(2026, 1, 1), date(2026, 1, 31)
    )


@pytest.mark.parametrize(
    "period,start,end",
    [
        (None, date(2026, 1, 1), None),
        (None, date(2026, 2, 1), date(2026, 1, 1)),
        ("anual", None, None),
    ],
)
def test_resolve_period_rejects_invalid_input(period, start, end):
    with pytest.raises(ValidationException):
        resolve_period(period, start, end)


async def test_signing_uses_active_config(
    client, admin_headers, physician, physician_headers, make_patient, make_exam
):
    await _configure(client, admin_headers, physician.id, {"ECG": 50}, 50)
    await _configure(client, admin_headers, physician.id, {"ecg": 80, "HOLTER": 150}, 40)

    configs = (await client.get(f"/api/v1/financial/configs/{physician.id}", headers=admin_headers)).json()
    assert [c["is_active"] for c in configs] == [True, False]

    await _signed_report(client, physician_headers, make_patient, make_exam)

    (transaction,) = (await client.get("/api/v1/financial/transactions", headers=admin_headers)).json()["items"]
    assert transaction["exam_type"] == "ECG"
    assert transaction["status"] == "pendente"
    assert Decimal(transaction["base_value"]) == Decimal("80")
    assert Decimal(transaction["physician_value"]) == Decimal("32")
    assert Decimal(transaction["clinic_value"]) == Decimal("48")


async def test_without_config_transaction_has_zero_value(
    client, admin_headers, physician_headers, make_patient, make_exam
):
    await _signed_report(client, physician_headers, make_patient, make_exam)

    (transaction,) = (await client.get("/api/v1/financial/transactions", headers=admin_headers)).json()["items"]
    assert Decimal(transaction["base_value"]) == Decimal("0")
    assert Decimal(transaction["commission_percent"]) == Decimal("30")


async def test_config_requires_physician(client, admin_headers, technician):
    response = await client.post(
        "/api/v1/financial/configs",
        json={"physician_id": str(technician.id), "prices_by_exam_type": {}, "commission_percent": 30},
        headers=admin_headers,
    )
    assert response.status_code == 404


async def test_config_rejects_unknown_exam_type(client, admin_headers, physician):
    response = await client.post(
        "/api/v1/financial/configs",
        json={"physician_id": str(physician.id), "prices_by_exam_type": {"RAIO-X": 10}, "commission_percent": 30},
        headers=admin_headers,
    )
    assert response.status_code == 422


async def test_transaction_is_created_once_per_report(
    client, physician_headers, make_patient, make_exam, db_session
):
    report = await _signed_report(client, physician_headers, make_patient, make_exam)

    stored = await db_session.get(MedicalReport, UUID(report["id"]))
    assert await ensure_transaction(db_session, stored, "ECG") is None


async def test_payment_status_transitions(client, admin_headers, physician_headers, make_patient, make_exam):
    await _signed_report(client, physician_headers, make_patient, make_exam)
    (transaction,) = (await client.get("/api/v1/financial/transactions", headers=admin_headers)).json()["items"]
    url = f"/api/v1/financial/transactions/{transaction['id']}"

    paid = await client.patch(url, json={"status": "pago"}, headers=admin_headers)
    assert paid.status_code == 200
    assert paid.json()["payment_date"] is not None

    pending = await client.patch(url, json={"status": "pendente"}, headers=admin_headers)
    assert pending.json()["payment_date"] is None

    await client.patch(url, json={"status": "cancelado"}, headers=admin_headers)
    reopened = await client.patch(url, json={"status": "pago"}, headers=admin_headers)
    assert reopened.status_code == 409

    # Solo administradores cambian el estado de pago
    forbidden = await client.patch(url, json={"status": "pago"}, headers=physician_headers)
    assert forbidden.status_code == 403


async def test_financial_report_totals(
    client, admin_headers, physician, physician_headers, other_physician, make_patient, make_exam
):
    await _configure(client, admin_headers, physician.id, {"ECG": 100, "HOLTER": 200}, 30)
    ecg = await _signed_report(client, physician_headers, make_patient, make_exam, exam_type="ECG")
    patient_id = (await client.get(f"/api/v1/exams/{ecg['exam_id']}", headers=admin_headers)).json()["patient_id"]
    await _signed_report(
        client, physician_headers, make_patient, make_exam, patient_id=patient_id, exam_type="HOLTER"
    )

    today = date.today()
    params = {"start": (today - timedelta(days=1)).isoformat(), "end": (today + timedelta(days=1)).isoformat()}
    report = (await client.get("/api/v1/financial/report", params=params, headers=admin_headers)).json()

    assert report["period"] == "intervalo"
    assert report["totals"]["count"] == 2
    assert Decimal(report["totals"]["base_value"]) == Decimal("300")
    assert Decimal(report["totals"]["physician_value"]) == Decimal("90")
    assert Decimal(report["totals"]["clinic_value"]) == Decimal("210")
    assert Decimal(report["totals"]["pending"]) == Decimal("90")
    assert Decimal(report["by_exam_type"]["HOLTER"]["base_value"]) == Decimal("200")

    own = (
        await client.get("/api/v1/financial/report", params=params, headers=auth_headers(other_physician))
    ).json()
    assert own["totals"]["count"] == 0


# ── Fatura mensal ────────────────────────────────────


async def test_monthly_invoice_groups_physician_transactions(
    client, admin_headers, physician, physician_headers, other_physician, make_patient, make_exam, audit_entries
):
    await _configure(client, admin_headers, physician.id, {"ECG": 100, "HOLTER": 200}, 30)
    ecg = await _signed_report(client, physician_headers, make_patient, make_exam, exam_type="ECG")
    patient_id = (await client.get(f"/api/v1/exams/{ecg['exam_id']}", headers=admin_headers)).json()["patient_id"]
    await _signed_report(
        client, physician_headers, make_patient, make_exam, patient_id=patient_id, exam_type="HOLTER"
    )

    today = datetime.now(timezone.utc).date()
    payload = {"physician_id": str(physician.id), "year": today.year, "month": today.month}
    response = await client.post("/api/v1/financial/invoices", json=payload, headers=admin_headers)
    assert response.status_code == 201, response.text
    invoice = response.json()
    assert invoice["status"] == "pendente"
    assert invoice["period_start"] == today.replace(day=1).isoformat()
    assert Decimal(invoice["total_value"]) == Decimal("90")
    assert sorted(Decimal(item["value"]) for item in invoice["items"]) == [Decimal("30"), Decimal("60")]

    (created,) = await audit_entries(collection="invoices")
    assert created.action == AuditAction.CREATE
    assert created.document_id == invoice["id"]

    duplicate = await client.post("/api/v1/financial/invoices", json=payload, headers=admin_headers)
    assert duplicate.status_code == 409

    empty = await client.post(
        "/api/v1/financial/invoices", json={**payload, "physician_id": str(other_physician.id)}, headers=admin_headers
    )
    assert empty.status_code == 404

    forbidden = await client.post("/api/v1/financial/invoices", json=payload, headers=physician_headers)
    assert forbidden.status_code == 403

    own = (await client.get("/api/v1/financial/invoices", headers=physician_headers)).json()
    assert [i["id"] for i in own] == [invoice["id"]]
    assert (await client.get("/api/v1/financial/invoices", headers=auth_headers(other_physician))).json() == []


async def test_paying_invoice_pays_its_transactions(
    client, admin_headers, physician, physician_headers, make_patient, make_exam
):
    await _configure(client, admin_headers, physician.id, {"ECG": 100}, 30)
    await _signed_report(client, physician_headers, make_patient, make_exam)

    today = datetime.now(timezone.utc).date()
    invoice = (
        await client.post(
            "/api/v1/financial/invoices",
            json={"physician_id": str(physician.id), "year": today.year, "month": today.month},
            headers=admin_headers,
        )
    ).json()
    url = f"/api/v1/financial/invoices/{invoice['id']}"

    paid = await client.patch(url, json={"status": "paga"}, headers=admin_headers)
    assert paid.status_code == 200
    assert paid.json()["payment_date"] is not None

    (transaction,) = (await client.get("/api/v1/financial/transactions", headers=admin_headers)).json()["items"]
    assert transaction["status"] == "pago"
    assert transaction["payment_date"] is not None

    await client.patch(url, json={"status": "cancelada"}, headers=admin_headers)
    reopened = await client.patch(url, json={"status": "pendente"}, headers=admin_headers)
    assert reopened.status_code == 409


def test_month_bounds():
    assert month_bounds(2026, 2) == (date(2026, 2, 1), date(2026, 2, 28))
    assert month_bounds(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))
    assert month_bounds(2026, 12) == (date(2026, 12, 1), date(2026, 12, 31))


# ── Dashboard ────────────────────────────────────────


async def test_dashboard_summarizes_current_month(
    client, admin_headers, physician, physician_headers, make_patient, make_exam
):
    await _configure(client, admin_headers, physician.id, {"ECG": 100}, 30)
    first = await _signed_report(client, physician_headers, make_patient, make_exam)
    patient_id = (await client.get(f"/api/v1/exams/{first['exam_id']}", headers=admin_headers)).json()["patient_id"]
    await _signed_report(client, physician_headers, make_patient, make_exam, patient_id=patient_id)
    await _signed_report(client, physician_headers, make_patient, make_exam, patient_id=patient_id)

    # Una transacción cancelada no suma
    items = (await client.get("/api/v1/financial/transactions", headers=admin_headers)).json()["items"]
    await client.patch(
        f"/api/v1/financial/transactions/{items[0]['id']}", json={"status": "cancelado"}, headers=admin_headers
    )

    response = await client.get("/api/v1/financial/dashboard", headers=admin_headers)
    assert response.status_code == 200
    dashboard = response.json()
    assert dashboard["month_totals"]["count"] == 2
    assert Decimal(dashboard["month_totals"]["base_value"]) == Decimal("200")
    assert Decimal(dashboard["month_totals"]["clinic_value"]) == Decimal("140")

    (top,) = dashboard["top_physicians"]
    assert top["physician_name"] == physician.name
    assert Decimal(top["physician_value"]) == Decimal("60")
    assert top["count"] == 2

    assert len(dashboard["recent_transactions"]) == 3
    assert len(dashboard["monthly"]) == 6
    assert dashboard["monthly"][-1]["month"] == date.today().strftime("%Y-%m")
    assert dashboard["monthly"][-1]["count"] == 2
    assert all(m["count"] == 0 for m in dashboard["monthly"][:-1])

    forbidden = await client.get("/api/v1/financial/dashboard", headers=physician_headers)
    assert forbidden.status_code == 403
