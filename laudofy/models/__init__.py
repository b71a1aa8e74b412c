"""
Modelos SQLAlchemy — exportar todos para que Alembic los detecte.
"""

from laudofy.models.user import User, UserRole
from laudofy.models.patient import Patient
from laudofy.models.exam import Exam
from laudofy.models.medical_report import HistoryAction, MedicalReport, ReportStatus, SendStatus
from laudofy.models.financial import FinancialConfig, FinancialTransaction, PaymentStatus
from laudofy.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from laudofy.models.audit_log import AuditAction, AuditLog, AuditStatus
