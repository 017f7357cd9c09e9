"""Create temp_address table

Revision ID: 001
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'temp_address',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('email_address', sa.String(320), nullable=False),
        sa.Column('access_token', sa.String(36), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email_address', name='uq_temp_address_email_address'),
        sa.UniqueConstraint('access_token', name='uq_temp_address_access_token'),
        sa.CheckConstraint('email_address = lower(email_address)', name='ck_temp_address_lowercase'),
    )

    # Resolver lookups compare lower-cased addresses
    op.create_index(
        'idx_temp_address_email_lower',
        'temp_address',
        [sa.text('lower(email_address)')],
    )

    # Cleanup job scans by expiry and active flag
    op.create_index('idx_temp_address_expires_at', 'temp_address', ['expires_at'])
    op.create_index('idx_temp_address_active', 'temp_address', ['is_active'])


def downgrade():
    op.drop_index('idx_temp_address_active', table_name='temp_address')
    op.drop_index('idx_temp_address_expires_at', table_name='temp_address')
    op.drop_index('idx_temp_address_email_lower', table_name='temp_address')
    op.drop_table('temp_address')
