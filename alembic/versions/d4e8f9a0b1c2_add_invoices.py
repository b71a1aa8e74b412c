"""add_invoices

Revision ID: d4e8f9a0b1c2
Revises: c7d1e2f3a4b5
Create Date: 2026-10-17 15:40:08.117203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'd4e8f9a0b1c2'
down_revision: Union[str, None] = 'c7d1e2f3a4b5'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('invoices',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('physician_id', sa.Uuid(), nullable=False),
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False, comment='Último día del mes facturado (inclusive)'),
        sa.Column('total_value', sa.Numeric(precision=12, scale=2), nullable=False, comment='Suma del valor del médico de los ítems'),
        sa.Column('status', sa.Enum('pendente', 'paga', 'cancelada', name='invoicestatus'), nullable=False),
        sa.Column('payment_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['physician_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_invoice_physician_period', 'invoices', ['physician_id', 'period_start'], unique=False)

    op.create_table('invoice_items',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('invoice_id', sa.Uuid(), nullable=False),
        sa.Column('transaction_id', sa.Uuid(), nullable=False),
        sa.Column('exam_type', sa.String(length=20), nullable=False),
        sa.Column('value', sa.Numeric(precision=12, scale=2), nullable=False, comment='Valor del médico en la transacción'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['transaction_id'], ['financial_transactions.id'], ),
        sa.PrimaryKeyConstraint('id')
    )


def downgrade() -> None:
    op.drop_table('invoice_items')
    op.drop_index('idx_invoice_physician_period', table_name='invoices')
    op.drop_table('invoices')
    sa.Enum(name='invoicestatus').drop(op.get_bind(), checkfirst=True)
