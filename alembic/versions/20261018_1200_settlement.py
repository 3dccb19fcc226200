"""create loan request, offer and agreement settlement tables

Revision ID: 20261018_1200_settlement
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_1200_settlement'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Loan requests
    op.create_table(
        'loan_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('student_address', sa.String(length=64), nullable=True),
        sa.Column('student_name', sa.String(length=200), nullable=True),
        sa.Column('school_address', sa.String(length=64), nullable=True),
        sa.Column('program', sa.String(length=200), nullable=True),
        sa.Column('total_amount', sa.String(length=40), nullable=True),
        sa.Column('currency', sa.Enum('XRP', name='currency'), nullable=False),
        sa.Column('graduation_date', sa.Date(), nullable=True),
        sa.Column('industry', sa.String(length=100), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum('DRAFT', 'OPEN', 'UNDER_NEGOTIATION', 'ACCEPTED', 'CLOSED', name='loanrequeststatus'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_loan_requests_id'), 'loan_requests', ['id'], unique=False)
    op.create_index(op.f('ix_loan_requests_student_address'), 'loan_requests', ['student_address'], unique=False)
    op.create_index(op.f('ix_loan_requests_industry'), 'loan_requests', ['industry'], unique=False)
    op.create_index(op.f('ix_loan_requests_status'), 'loan_requests', ['status'], unique=False)

    op.create_table(
        'request_installments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('amount', sa.String(length=40), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.ForeignKeyConstraint(['request_id'], ['loan_requests.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_request_installments_id'), 'request_installments', ['id'], unique=False)
    op.create_index(op.f('ix_request_installments_request_id'), 'request_installments', ['request_id'], unique=False)

    # Offers
    op.create_table(
        'offers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=False),
        sa.Column('company_address', sa.String(length=64), nullable=False),
        sa.Column('interest_rate', sa.String(length=40), nullable=False),
        sa.Column('work_obligation_years', sa.Integer(), nullable=False),
        sa.Column('terms_uri', sa.String(length=500), nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'REJECTED', 'ACCEPTED', 'CANCELLED', name='offerstatus'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['request_id'], ['loan_requests.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_offers_id'), 'offers', ['id'], unique=False)
    op.create_index(op.f('ix_offers_request_id'), 'offers', ['request_id'], unique=False)
    op.create_index(op.f('ix_offers_company_address'), 'offers', ['company_address'], unique=False)
    op.create_index(op.f('ix_offers_status'), 'offers', ['status'], unique=False)

    # Loan agreements
    op.create_table(
        'loan_agreements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=False),
        sa.Column('offer_id', sa.Integer(), nullable=False),
        sa.Column('student_address', sa.String(length=64), nullable=False),
        sa.Column('company_address', sa.String(length=64), nullable=False),
        sa.Column('school_address', sa.String(length=64), nullable=False),
        sa.Column('interest_rate', sa.String(length=40), nullable=False),
        sa.Column('principal', sa.String(length=40), nullable=False),
        sa.Column('total_owed', sa.String(length=40), nullable=False),
        sa.Column('amount_paid', sa.String(length=40), nullable=False),
        sa.Column('metadata_uri', sa.String(length=255), nullable=True),
        sa.Column('asset_id', sa.String(length=64), nullable=True),
        sa.Column('transfer_offer_ref', sa.String(length=64), nullable=True),
        sa.Column('status', sa.Enum('AWAITING_FUNDING', 'FUNDED', 'REPAYING', 'REPAID', 'CLOSED', name='agreementstatus'), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['request_id'], ['loan_requests.id'], ),
        sa.ForeignKeyConstraint(['offer_id'], ['offers.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_loan_agreements_id'), 'loan_agreements', ['id'], unique=False)
    op.create_index(op.f('ix_loan_agreements_request_id'), 'loan_agreements', ['request_id'], unique=True)
    op.create_index(op.f('ix_loan_agreements_offer_id'), 'loan_agreements', ['offer_id'], unique=False)
    op.create_index(op.f('ix_loan_agreements_student_address'), 'loan_agreements', ['student_address'], unique=False)
    op.create_index(op.f('ix_loan_agreements_company_address'), 'loan_agreements', ['company_address'], unique=False)
    op.create_index(op.f('ix_loan_agreements_asset_id'), 'loan_agreements', ['asset_id'], unique=False)
    op.create_index(op.f('ix_loan_agreements_status'), 'loan_agreements', ['status'], unique=False)

    op.create_table(
        'agreement_installments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('agreement_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('amount', sa.String(length=40), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('lock_ref', sa.String(length=64), nullable=True),
        sa.Column('lock_sequence', sa.Integer(), nullable=True),
        sa.Column('released', sa.Boolean(), nullable=False),
        sa.Column('released_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['agreement_id'], ['loan_agreements.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('agreement_id', 'position', name='uq_agreement_installments_position')
    )
    op.create_index(op.f('ix_agreement_installments_id'), 'agreement_installments', ['id'], unique=False)
    op.create_index(op.f('ix_agreement_installments_agreement_id'), 'agreement_installments', ['agreement_id'], unique=False)

    op.create_table(
        'agreement_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('agreement_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=50), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['agreement_id'], ['loan_agreements.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_agreement_events_id'), 'agreement_events', ['id'], unique=False)
    op.create_index(op.f('ix_agreement_events_agreement_id'), 'agreement_events', ['agreement_id'], unique=False)
    op.create_index(op.f('ix_agreement_events_name'), 'agreement_events', ['name'], unique=False)

    # Repayment bookkeeping
    op.create_table(
        'processed_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tx_hash', sa.String(length=64), nullable=False),
        sa.Column('agreement_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.String(length=40), nullable=False),
        sa.Column('credited', sa.String(length=40), nullable=False),
        sa.Column('excess', sa.String(length=40), nullable=False),
        sa.Column('ledger_index', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['agreement_id'], ['loan_agreements.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_processed_payments_id'), 'processed_payments', ['id'], unique=False)
    op.create_index(op.f('ix_processed_payments_tx_hash'), 'processed_payments', ['tx_hash'], unique=True)
    op.create_index(op.f('ix_processed_payments_agreement_id'), 'processed_payments', ['agreement_id'], unique=False)

    op.create_table(
        'listener_checkpoints',
        sa.Column('account', sa.String(length=64), nullable=False),
        sa.Column('last_ledger_index', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('account')
    )


def downgrade() -> None:
    op.drop_table('listener_checkpoints')

    op.drop_index(op.f('ix_processed_payments_agreement_id'), table_name='processed_payments')
    op.drop_index(op.f('ix_processed_payments_tx_hash'), table_name='processed_payments')
    op.drop_index(op.f('ix_processed_payments_id'), table_name='processed_payments')
    op.drop_table('processed_payments')

    op.drop_index(op.f('ix_agreement_events_name'), table_name='agreement_events')
    op.drop_index(op.f('ix_agreement_events_agreement_id'), table_name='agreement_events')
    op.drop_index(op.f('ix_agreement_events_id'), table_name='agreement_events')
    op.drop_table('agreement_events')

    op.drop_index(op.f('ix_agreement_installments_agreement_id'), table_name='agreement_installments')
    op.drop_index(op.f('ix_agreement_installments_id'), table_name='agreement_installments')
    op.drop_table('agreement_installments')

    op.drop_index(op.f('ix_loan_agreements_status'), table_name='loan_agreements')
    op.drop_index(op.f('ix_loan_agreements_asset_id'), table_name='loan_agreements')
    op.drop_index(op.f('ix_loan_agreements_company_address'), table_name='loan_agreements')
    op.drop_index(op.f('ix_loan_agreements_student_address'), table_name='loan_agreements')
    op.drop_index(op.f('ix_loan_agreements_offer_id'), table_name='loan_agreements')
    op.drop_index(op.f('ix_loan_agreements_request_id'), table_name='loan_agreements')
    op.drop_index(op.f('ix_loan_agreements_id'), table_name='loan_agreements')
    op.drop_table('loan_agreements')

    op.drop_index(op.f('ix_offers_status'), table_name='offers')
    op.drop_index(op.f('ix_offers_company_address'), table_name='offers')
    op.drop_index(op.f('ix_offers_request_id'), table_name='offers')
    op.drop_index(op.f('ix_offers_id'), table_name='offers')
    op.drop_table('offers')

    op.drop_index(op.f('ix_request_installments_request_id'), table_name='request_installments')
    op.drop_index(op.f('ix_request_installments_id'), table_name='request_installments')
    op.drop_table('request_installments')

    op.drop_index(op.f('ix_loan_requests_status'), table_name='loan_requests')
    op.drop_index(op.f('ix_loan_requests_industry'), table_name='loan_requests')
    op.drop_index(op.f('ix_loan_requests_student_address'), table_name='loan_requests')
    op.drop_index(op.f('ix_loan_requests_id'), table_name='loan_requests')
    op.drop_table('loan_requests')

    op.execute('DROP TYPE IF EXISTS agreementstatus')
    op.execute('DROP TYPE IF EXISTS offerstatus')
    op.execute('DROP TYPE IF EXISTS loanrequeststatus')
    op.execute('DROP TYPE IF EXISTS currency')
