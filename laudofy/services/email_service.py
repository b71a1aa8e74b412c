"""
Envío de e-mails vía SendGrid (laudos firmados y reseteo de contraseña).

Sin API key configurada opera en modo simulación: registra el envío en el log
y devuelve un resultado con status "simulated".

Docs: https://docs.sendgrid.com/api-reference/mail-send/mail-send
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from uuid import UUID

import httpx

from laudofy.config import Settings, get_settings

logger = logging.getLogger(__name__)


class EmailError(Exception):
    """Error de comunicación con SendGrid."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class ReportEmail:
    recipient_email: str
    recipient_name: str
    report_id: UUID
    file_url: str
    access_code: str


def build_report_email_body(message: ReportEmail, public_url: str) -> str:
    return (
        f"Olá {message.recipient_name},\n\n"
        f"Seu laudo está disponível.\n"
        f"Arquivo: {message.file_url}\n"
        f"Consulta online: {public_url}\n"
        f"Código de acesso: {message.access_code}\n"
    )


class SendGridMailer:
    def __init__(self, settings: Settings):
        self.api_key = settings.SENDGRID_API_KEY
        self.api_url = settings.SENDGRID_API_URL
        self.sender = settings.EMAIL_FROM
        self.frontend_url = settings.FRONTEND_URL.rstrip("/")

    @property
    def simulated(self) -> bool:
        return not self.api_key or self.api_key == "your-sendgrid-api-key"

    async def _send(self, to: str, subject: str, body: str) -> dict:
        # ── Modo simulación (sin credenciales) ───────
        if self.simulated:
            logger.warning("SendGrid API key no configurada, simulando envío")
            logger.info("[SIMULATED EMAIL] Subject: %s", subject)
            return {"status": "simulated", "to": to}

        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.sender},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=15.0) as client:
                response = await client.post(self.api_url, json=payload, headers=headers)
        except httpx.RequestError as exc:
            logger.error("Error de conexión con SendGrid: %s", exc)
            raise EmailError(f"Error de conexión con SendGrid: {exc}") from exc

        if response.status_code not in (200, 202):
            logger.error("SendGrid respondió %s", response.status_code)
            raise EmailError(
                f"SendGrid respondió con status {response.status_code}",
                status_code=response.status_code,
            )

        return {"status": "sent", "to": to, "message_id": response.headers.get("X-Message-Id")}

    async def send_report(self, message: ReportEmail) -> dict:
        """Envía el laudo firmado con el link público y el código de acceso."""
        public_url = f"{self.frontend_url}/publico/{message.report_id}"
        body = build_report_email_body(message, public_url)
        return await self._send(message.recipient_email, "Seu laudo está disponível", body)

    async def send_password_reset(self, to: str, name: str, token: str) -> dict:
        reset_url = f"{self.frontend_url}/resetar-senha?token={token}"
        body = (
            f"Olá {name},\n\n"
            f"Para redefinir sua senha acesse: {reset_url}\n"
            "Se você não solicitou, ignore este e-mail.\n"
        )
        return await self._send(to, "Redefinição de senha", body)


@lru_cache
def get_mailer() -> SendGridMailer:
    return SendGridMailer(get_settings())
