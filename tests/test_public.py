"""
Tests de la consulta pública de laudos por código de acceso.
"""

from uuid import uuid4


async def _report(client, physician_headers, make_patient, make_exam) -> dict:
    patient = await make_patient(birth_date="1980-05-17")
    exam = await make_exam(patient["id"], exam_type="MAPA")
    response = await client.post(
        "/api/v1/reports",
        data={"exam_id": exam["id"], "conclusion": "Pressão arterial dentro da normalidade."},
        headers=physician_headers,
    )
    return response.json()


async def test_public_view_with_access_code(client, physician, physician_headers, make_patient, make_exam):
    report = await _report(client, physician_headers, make_patient, make_exam)

    response = await client.post(
        f"/api/v1/public/reports/{report['id']}", json={"access_code": report["access_code"]}
    )
    assert response.status_code == 200
    view = response.json()
    assert view["patient_name"] == "Maria da Silva"
    assert view["exam_type"] == "MAPA"
    assert view["physician_name"] == physician.name
    assert view["conclusion"] == "Pressão arterial dentro da normalidade."
    assert view["version"] == 1
    # La vista pública no expone datos de contacto ni el CPF
    assert "cpf" not in view and "access_code" not in view


async def test_wrong_code_and_unknown_report_look_the_same(client, physician_headers, make_patient, make_exam):
    report = await _report(client, physician_headers, make_patient, make_exam)
    # Los códigos generados van de 1000 a 9999
    wrong = "0000"

    bad_code = await client.post(f"/api/v1/public/reports/{report['id']}", json={"access_code": wrong})
    unknown = await client.post(f"/api/v1/public/reports/{uuid4()}", json={"access_code": wrong})

    assert bad_code.status_code == unknown.status_code == 401
    assert bad_code.json() == unknown.json()
