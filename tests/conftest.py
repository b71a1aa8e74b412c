"""
Fixtures compartidas para Pytest.
Base SQLite por test, proveedores externos simulados y usuarios por rol.
"""

import os

from cryptography.fernet import Fernet

# La configuración se lee al importar laudofy: las variables van primero.
os.environ["FERNET_KEY"] = Fernet.generate_key().decode()
os.environ["BLIND_INDEX_KEY"] = "test-blind-index-key"
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-with-at-least-32-bytes!!"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["AUDIT_RETRY_DELAY_SECONDS"] = "0"
os.environ["REPORT_CREATION_FLOW"] = "draft_then_sign"
os.environ["DEBUG"] = "false"

from collections.abc import AsyncGenerator  # noqa: E402
from uuid import UUID  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from laudofy.auth.jwt import create_access_token  # noqa: E402
from laudofy.core.crypto import FieldCipher, get_cipher  # noqa: E402
from laudofy.core.security import hash_password  # noqa: E402
from laudofy.database import Base, get_db, get_session_factory  # noqa: E402
from laudofy.main import app  # noqa: E402
from laudofy.models.audit_log import AuditLog  # noqa: E402
from laudofy.models.user import User, UserRole  # noqa: E402
from laudofy.services.email_service import EmailError, ReportEmail, get_mailer  # noqa: E402
from laudofy.services.report_document import (  # noqa: E402
    PdfDispatchError,
    RenderError,
    build_placeholder_pdf,
    get_pdf_dispatcher,
)
from laudofy.services.storage_service import FileUpload, StorageError, get_storage  # noqa: E402

PASSWORD = "SenhaForte123"
PDF_BYTES = build_placeholder_pdf(["exame de teste"])


# ── Proveedores simulados ────────────────────────────


class FakeStorage:
    def __init__(self):
        self.uploads: list[FileUpload] = []
        self.fail = False

    async def upload(self, file: FileUpload) -> str:
        if self.fail:
            raise StorageError("storage fuera de servicio")
        self.uploads.append(file)
        return f"https://cdn.test/{len(self.uploads)}/{file.filename}"


class FakeMailer:
    def __init__(self):
        self.reports: list[ReportEmail] = []
        self.resets: list[tuple[str, str, str]] = []
        self.fail = False

    async def send_report(self, message: ReportEmail) -> dict:
        if self.fail:
            raise EmailError("SendGrid respondió con status 503", status_code=503)
        self.reports.append(message)
        return {"status": "sent", "to": message.recipient_email}

    async def send_password_reset(self, to: str, name: str, token: str) -> dict:
        if self.fail:
            raise EmailError("SendGrid respondió con status 503", status_code=503)
        self.resets.append((to, name, token))
        return {"status": "sent", "to": to}


class FakePdfDispatcher:
    def __init__(self):
        self.dispatched: list[UUID] = []
        self.fail = False

    def dispatch(self, report_id: UUID) -> None:
        if self.fail:
            raise PdfDispatchError("broker no disponible")
        self.dispatched.append(report_id)


class FakeRenderer:
    def __init__(self):
        self.documents: list[dict] = []
        self.fail = False

    async def render(self, document: dict) -> bytes:
        if self.fail:
            raise RenderError("Renderizador respondió con status 500")
        self.documents.append(document)
        return build_placeholder_pdf([str(v) for v in document.values()])


# ── Base de datos ────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Base SQLite en archivo: la auditoría escribe en su propia conexión."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def cipher() -> FieldCipher:
    return get_cipher()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def dispatcher() -> FakePdfDispatcher:
    return FakePdfDispatcher()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest_asyncio.fixture
async def client(session_factory, storage, mailer, dispatcher) -> AsyncGenerator[AsyncClient, None]:
    """Cliente HTTP de test contra la base y los proveedores simulados."""

    async def _get_test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_pdf_dispatcher] = lambda: dispatcher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Usuarios ─────────────────────────────────────────


async def _create_user(db: AsyncSession, email: str, name: str, role: UserRole, crm: str | None = None) -> User:
    user = User(
        email=email,
        name=name,
        role=role,
        crm=crm,
        hashed_password=hash_password(PASSWORD),
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


def auth_headers(user: User) -> dict[str, str]:
    token, _ = create_access_token(user.id, user.name, user.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "admin@laudofy.com.br", "Ana Admin", UserRole.ADMIN)


@pytest_asyncio.fixture
async def physician(db_session: AsyncSession) -> User:
    return await _create_user(
        db_session, "medico@laudofy.com.br", "Dr. Paulo Souza", UserRole.PHYSICIAN, crm="CRM-SP 12345"
    )


@pytest_asyncio.fixture
async def other_physician(db_session: AsyncSession) -> User:
    return await _create_user(
        db_session, "medica@laudofy.com.br", "Dra. Lúcia Prado", UserRole.PHYSICIAN, crm="CRM-RJ 54321"
    )


@pytest_asyncio.fixture
async def technician(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "tecnico@laudofy.com.br", "Tiago Técnico", UserRole.TECHNICIAN)


@pytest.fixture
def admin_headers(admin: User) -> dict[str, str]:
    return auth_headers(admin)


@pytest.fixture
def physician_headers(physician: User) -> dict[str, str]:
    return auth_headers(physician)


@pytest.fixture
def technician_headers(technician: User) -> dict[str, str]:
    return auth_headers(technician)


# ── Datos clínicos ───────────────────────────────────


@pytest.fixture
def make_patient(client: AsyncClient, admin_headers):
    """Crea un paciente vía API y devuelve el JSON de respuesta."""

    async def _make(**overrides) -> dict:
        payload = {
            "name": "Maria da Silva",
            "cpf": "123.456.789-00",
            "birth_date": "1980-05-17",
            "address": "Rua das Flores, 100",
            "phone": "(11) 98765-4321",
            "email": "maria@pacientes.com.br",
            **overrides,
        }
        response = await client.post("/api/v1/patients", json=payload, headers=admin_headers)
        assert response.status_code == 201, response.text
        return response.json()

    return _make


@pytest.fixture
def make_exam(client: AsyncClient, technician_headers):
    """Sube un examen (multipart) para el paciente dado."""

    async def _make(patient_id: str, **fields) -> dict:
        form = {"patient_id": patient_id, "exam_type": "ECG", **fields}
        response = await client.post(
            "/api/v1/exams",
            data=form,
            files={"file": ("ecg.pdf", PDF_BYTES, "application/pdf")},
            headers=technician_headers,
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _make


@pytest.fixture
def audit_entries(session_factory):
    """Lee el audit log en una sesión nueva."""

    async def _entries(**filters) -> list[AuditLog]:
        async with session_factory() as session:
            query = select(AuditLog).order_by(AuditLog.created_at)
            for column, value in filters.items():
                query = query.where(getattr(AuditLog, column) == value)
            result = await session.execute(query)
            return list(result.scalars().all())

    return _entries
