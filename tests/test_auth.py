"""
Tests de autenticación y usuarios: login auditado, rotación del refresh
token, reseteo de contraseña y administración de usuarios.
"""

from laudofy.models.audit_log import AuditAction, AuditStatus

from conftest import PASSWORD


async def _login(client, email: str, password: str = PASSWORD):
    return await client.post("/api/v1/auth/login", json={"email": email, "password": password})


async def test_login_success_is_audited(client, physician, audit_entries):
    response = await _login(client, "MEDICO@laudofy.com.br")
    assert response.status_code == 200
    body = response.json()
    assert body["user"]["role"] == "medico"
    assert body["tokens"]["token_type"] == "bearer"

    me = await client.get(
        "/api/v1/auth/me", headers={"Authorization": f"Bearer {body['tokens']['access_token']}"}
    )
    assert me.json()["email"] == physician.email

    (entry,) = await audit_entries(action=AuditAction.LOGIN)
    assert entry.status == AuditStatus.OK
    assert entry.user_id == physician.id


async def test_failed_logins_are_audited(client, physician, audit_entries):
    wrong_password = await _login(client, physician.email, "senha-errada")
    unknown = await _login(client, "ninguem@laudofy.com.br")
    assert wrong_password.status_code == unknown.status_code == 401
    # Misma respuesta exista o no el usuario
    assert wrong_password.json() == unknown.json()

    entries = await audit_entries(action=AuditAction.LOGIN_FAILED)
    assert [e.status for e in entries] == [AuditStatus.FAILED, AuditStatus.FAILED]
    assert [e.user_id for e in entries] == [physician.id, None]


async def test_invalid_bearer_token_is_rejected(client):
    response = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer no-es-un-jwt"})
    assert response.status_code == 401


async def test_refresh_rotates_tokens(client, physician, audit_entries):
    tokens = (await _login(client, physician.email)).json()["tokens"]

    rotated = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert rotated.status_code == 200
    assert rotated.json()["refresh_token"] != tokens["refresh_token"]

    reused = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert reused.status_code == 401

    (failed,) = await audit_entries(action=AuditAction.REFRESH_TOKEN_FAILED)
    assert failed.status == AuditStatus.FAILED


async def test_logout_revokes_refresh_token(client, physician):
    tokens = (await _login(client, physician.email)).json()["tokens"]
    headers = {"Authorization": f"Bearer {tokens['access_token']}"}

    assert (await client.post("/api/v1/auth/logout", headers=headers)).status_code == 204

    response = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert response.status_code == 401


async def test_password_reset_flow(client, physician, mailer, audit_entries):
    response = await client.post("/api/v1/auth/forgot-password", json={"email": physician.email})
    assert response.status_code == 200
    (to, _, token) = mailer.resets[0]
    assert to == physician.email

    reset = await client.post(
        "/api/v1/auth/reset-password", json={"token": token, "new_password": "NovaSenha456"}
    )
    assert reset.status_code == 200

    assert (await _login(client, physician.email)).status_code == 401
    assert (await _login(client, physician.email, "NovaSenha456")).status_code == 200

    reused = await client.post(
        "/api/v1/auth/reset-password", json={"token": token, "new_password": "OutraSenha789"}
    )
    assert reused.status_code == 422

    assert len(await audit_entries(action=AuditAction.PASSWORD_RESET_SUCCESS)) == 1
    assert len(await audit_entries(action=AuditAction.PASSWORD_RESET_INVALID_TOKEN)) == 1


async def test_forgot_password_unknown_email_gives_same_answer(client, physician, mailer):
    known = await client.post("/api/v1/auth/forgot-password", json={"email": physician.email})
    unknown = await client.post("/api/v1/auth/forgot-password", json={"email": "ninguem@laudofy.com.br"})

    assert known.json() == unknown.json()
    assert len(mailer.resets) == 1


# ── Usuarios ─────────────────────────────────────────


async def test_admin_manages_users(client, admin_headers):
    missing_crm = await client.post(
        "/api/v1/users",
        json={"email": "novo@laudofy.com.br", "name": "Dr. Novo", "role": "medico", "password": PASSWORD},
        headers=admin_headers,
    )
    assert missing_crm.status_code == 422

    created = await client.post(
        "/api/v1/users",
        json={
            "email": "Novo@laudofy.com.br",
            "name": "Dr. Novo",
            "role": "medico",
            "crm": "CRM-MG 999",
            "password": PASSWORD,
        },
        headers=admin_headers,
    )
    assert created.status_code == 201
    user = created.json()
    assert user["email"] == "novo@laudofy.com.br"

    duplicate = await client.post(
        "/api/v1/users",
        json={"email": "novo@laudofy.com.br", "name": "Outro", "role": "tecnico", "password": PASSWORD},
        headers=admin_headers,
    )
    assert duplicate.status_code == 409

    assert (await client.delete(f"/api/v1/users/{user['id']}", headers=admin_headers)).status_code == 204
    assert (await _login(client, "novo@laudofy.com.br")).status_code == 401


async def test_users_are_admin_only(client, technician_headers):
    response = await client.get("/api/v1/users", headers=technician_headers)
    assert response.status_code == 403
