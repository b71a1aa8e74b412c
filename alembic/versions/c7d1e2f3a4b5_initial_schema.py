"""initial_schema

Revision ID: c7d1e2f3a4b5
Revises:
Create Date: 2026-10-17 09:12:40.512031

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'c7d1e2f3a4b5'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


REPORT_STATUSES = (
    'Rascunho', 'Laudo em processamento', 'Laudo realizado', 'Laudo assinado',
    'Laudo refeito', 'Cancelado', 'Erro ao gerar PDF', 'Erro no envio',
)
AUDIT_ACTIONS = (
    'create', 'update', 'delete', 'login', 'logout', 'other',
    'login_failed', 'refresh_token', 'refresh_token_failed', 'create_failed',
    'upload_signed', 'recreate', 'forgot_password', 'forgot_password_failed',
    'forgot_password_request', 'reset_password', 'password_reset_failed',
    'password_reset_invalid_token', 'password_reset_success',
)


def _json() -> sa.types.TypeEngine:
    return sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    # 1. Usuarios
    op.create_table('users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('hashed_password', sa.String(length=255), nullable=False),
        sa.Column('role', sa.Enum('ADMIN', 'PHYSICIAN', 'TECHNICIAN', name='userrole'), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('crm', sa.String(length=20), nullable=True, comment='Registro en el Conselho Regional de Medicina'),
        sa.Column('refresh_token_hash', sa.String(length=64), nullable=True),
        sa.Column('reset_token_hash', sa.String(length=64), nullable=True),
        sa.Column('reset_token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('last_login', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_refresh_token_hash', 'users', ['refresh_token_hash'], unique=False)
    op.create_index('ix_users_reset_token_hash', 'users', ['reset_token_hash'], unique=False)

    # 2. Pacientes
    op.create_table('patients',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('cpf', sa.Text(), nullable=False, comment='CPF (solo dígitos) cifrado con Fernet'),
        sa.Column('cpf_hash', sa.String(length=64), nullable=False, comment='HMAC-SHA256 del CPF normalizado para unicidad y búsqueda'),
        sa.Column('birth_date', sa.Text(), nullable=False, comment='YYYY-MM-DD cifrado'),
        sa.Column('address', sa.Text(), nullable=True, comment='Cifrado con Fernet'),
        sa.Column('phone', sa.Text(), nullable=True, comment='Cifrado con Fernet'),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_patients_name', 'patients', ['name'], unique=False)
    op.create_index('ix_patients_cpf_hash', 'patients', ['cpf_hash'], unique=True)

    # 3. Exámenes (tipo, estado, lecturas y URLs cifrados)
    op.create_table('exams',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('patient_id', sa.Uuid(), nullable=False),
        sa.Column('technician_id', sa.Uuid(), nullable=False),
        sa.Column('exam_type', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('file_url', sa.Text(), nullable=False),
        sa.Column('thumbnail_url', sa.Text(), nullable=True),
        sa.Column('pr_segment', sa.Text(), nullable=True, comment='Segmento PR (ms)'),
        sa.Column('heart_rate', sa.Text(), nullable=True, comment='Frecuencia cardíaca (bpm)'),
        sa.Column('qrs_duration', sa.Text(), nullable=True, comment='Duración QRS (ms)'),
        sa.Column('qrs_axis', sa.Text(), nullable=True, comment='Eje medio QRS (grados)'),
        sa.Column('height', sa.Text(), nullable=True, comment='Altura (cm)'),
        sa.Column('weight', sa.Text(), nullable=True, comment='Peso (kg)'),
        sa.Column('age', sa.Text(), nullable=True, comment='Edad declarada al examen'),
        sa.Column('symptoms', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['patient_id'], ['patients.id'], ),
        sa.ForeignKeyConstraint(['technician_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_exams_patient_id', 'exams', ['patient_id'], unique=False)
    op.create_index('ix_exams_technician_id', 'exams', ['technician_id'], unique=False)

    # 4. Laudos versionados
    op.create_table('medical_reports',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('exam_id', sa.Uuid(), nullable=False),
        sa.Column('physician_id', sa.Uuid(), nullable=False),
        sa.Column('physician_name', sa.Text(), nullable=False),
        sa.Column('conclusion', sa.Text(), nullable=False),
        sa.Column('original_file_url', sa.Text(), nullable=True),
        sa.Column('signed_file_url', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum(*REPORT_STATUSES, name='report_status', native_enum=False, length=40), nullable=False),
        sa.Column('valid', sa.Boolean(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('previous_report_id', sa.Uuid(), nullable=True),
        sa.Column('replacement_report_id', sa.Uuid(), nullable=True),
        sa.Column('redo_reason', sa.Text(), nullable=True, comment='Motivo del rehecho (cifrado)'),
        sa.Column('replacement_reason', sa.Text(), nullable=True, comment='Motivo por el que esta versión fue sustituida (cifrado)'),
        sa.Column('invalidation_reason', sa.Text(), nullable=True),
        sa.Column('history', _json(), nullable=False),
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        sa.Column('created_by_name', sa.Text(), nullable=True),
        sa.Column('updated_by_id', sa.Uuid(), nullable=True),
        sa.Column('updated_by_name', sa.Text(), nullable=True),
        sa.Column('signed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('email_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('email_recipient', sa.Text(), nullable=True),
        sa.Column('public_link', sa.Text(), nullable=True),
        sa.Column('access_code', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['exam_id'], ['exams.id'], ),
        sa.ForeignKeyConstraint(['physician_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['previous_report_id'], ['medical_reports.id'], ),
        sa.ForeignKeyConstraint(['replacement_report_id'], ['medical_reports.id'], ),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['updated_by_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_medical_reports_exam_id', 'medical_reports', ['exam_id'], unique=False)
    op.create_index('ix_medical_reports_physician_id', 'medical_reports', ['physician_id'], unique=False)
    op.create_index('ix_medical_reports_status', 'medical_reports', ['status'], unique=False)
    op.create_index('ix_medical_reports_valid', 'medical_reports', ['valid'], unique=False)
    op.create_index('ix_medical_reports_signed_at', 'medical_reports', ['signed_at'], unique=False)
    # Un solo laudo válido por examen
    op.create_index(
        'uq_medical_reports_exam_valid', 'medical_reports', ['exam_id'], unique=True,
        postgresql_where=sa.text('valid = true'),
        sqlite_where=sa.text('valid = 1'),
    )

    # 5. Financiero
    op.create_table('financial_configs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('physician_id', sa.Uuid(), nullable=False),
        sa.Column('prices_by_exam_type', _json(), nullable=False, comment='Precio base por tipo de examen: {"ECG": 80.0, "HOLTER": 150.0}'),
        sa.Column('commission_percent', sa.Numeric(precision=5, scale=2), nullable=False, comment='Porcentaje (0-100) que corresponde al médico'),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['physician_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_financial_configs_physician_id', 'financial_configs', ['physician_id'], unique=False)
    op.create_index('idx_financial_config_physician_active', 'financial_configs', ['physician_id', 'is_active'], unique=False)

    op.create_table('financial_transactions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('report_id', sa.Uuid(), nullable=False),
        sa.Column('exam_id', sa.Uuid(), nullable=False),
        sa.Column('physician_id', sa.Uuid(), nullable=False),
        sa.Column('exam_type', sa.String(length=20), nullable=False),
        sa.Column('base_value', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('commission_percent', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('physician_value', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('clinic_value', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('status', sa.Enum('pendente', 'pago', 'cancelado', name='paymentstatus'), nullable=False),
        sa.Column('report_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('payment_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['report_id'], ['medical_reports.id'], ),
        sa.ForeignKeyConstraint(['exam_id'], ['exams.id'], ),
        sa.ForeignKeyConstraint(['physician_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('report_id')
    )
    op.create_index('idx_financial_tx_physician_date', 'financial_transactions', ['physician_id', 'report_date'], unique=False)
    op.create_index('idx_financial_tx_status', 'financial_transactions', ['status'], unique=False)

    # 6. Audit log (append-only)
    op.create_table('audit_log',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=True, comment='Null en intentos no autenticados'),
        sa.Column('user_name', sa.String(length=200), nullable=True),
        sa.Column('action', sa.Enum(*AUDIT_ACTIONS, name='auditaction', native_enum=False, length=40), nullable=False),
        sa.Column('collection', sa.String(length=50), nullable=False, comment='Tabla afectada: patients, exams, medical_reports, etc.'),
        sa.Column('document_id', sa.String(length=36), nullable=True, comment='UUID del registro afectado'),
        sa.Column('status', sa.Enum('ok', 'failed', name='auditstatus', native_enum=False, length=10), nullable=False),
        sa.Column('detail', sa.Text(), nullable=True),
        sa.Column('before_data', _json(), nullable=True, comment='Snapshot descifrado antes del cambio'),
        sa.Column('after_data', _json(), nullable=True, comment='Snapshot descifrado después del cambio'),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_audit_log_user_id', 'audit_log', ['user_id'], unique=False)
    op.create_index('ix_audit_log_action', 'audit_log', ['action'], unique=False)
    op.create_index('ix_audit_log_collection', 'audit_log', ['collection'], unique=False)
    op.create_index('ix_audit_log_document_id', 'audit_log', ['document_id'], unique=False)
    op.create_index('idx_audit_log_created_at_desc', 'audit_log', [sa.text('created_at DESC')], unique=False)


def downgrade() -> None:
    op.drop_index('idx_audit_log_created_at_desc', table_name='audit_log')
    op.drop_index('ix_audit_log_document_id', table_name='audit_log')
    op.drop_index('ix_audit_log_collection', table_name='audit_log')
    op.drop_index('ix_audit_log_action', table_name='audit_log')
    op.drop_index('ix_audit_log_user_id', table_name='audit_log')
    op.drop_table('audit_log')

    op.drop_index('idx_financial_tx_status', table_name='financial_transactions')
    op.drop_index('idx_financial_tx_physician_date', table_name='financial_transactions')
    op.drop_table('financial_transactions')
    op.drop_index('idx_financial_config_physician_active', table_name='financial_configs')
    op.drop_index('ix_financial_configs_physician_id', table_name='financial_configs')
    op.drop_table('financial_configs')

    op.drop_index('uq_medical_reports_exam_valid', table_name='medical_reports')
    op.drop_index('ix_medical_reports_signed_at', table_name='medical_reports')
    op.drop_index('ix_medical_reports_valid', table_name='medical_reports')
    op.drop_index('ix_medical_reports_status', table_name='medical_reports')
    op.drop_index('ix_medical_reports_physician_id', table_name='medical_reports')
    op.drop_index('ix_medical_reports_exam_id', table_name='medical_reports')
    op.drop_table('medical_reports')

    op.drop_index('ix_exams_technician_id', table_name='exams')
    op.drop_index('ix_exams_patient_id', table_name='exams')
    op.drop_table('exams')

    op.drop_index('ix_patients_cpf_hash', table_name='patients')
    op.drop_index('ix_patients_name', table_name='patients')
    op.drop_table('patients')

    op.drop_index('ix_users_reset_token_hash', table_name='users')
    op.drop_index('ix_users_refresh_token_hash', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
    sa.Enum(name='paymentstatus').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='userrole').drop(op.get_bind(), checkfirst=True)
