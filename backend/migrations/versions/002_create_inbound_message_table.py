"""Create inbound_message table

Revision ID: 002
Revises: 001
Create Date: 2026-10-17 09:30:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'inbound_message',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('temp_address_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('message_id', sa.Text(), nullable=False),
        sa.Column('sender_email', sa.String(320), nullable=False),
        sa.Column('sender_name', sa.Text(), nullable=True),
        sa.Column('recipient_email', sa.String(320), nullable=False),
        sa.Column('subject', sa.Text(), server_default="(No Subject)", nullable=False),
        sa.Column('body_text', sa.Text(), server_default="", nullable=False),
        sa.Column('body_html', sa.Text(), server_default="", nullable=False),
        sa.Column('attachments', postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column('headers', postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column('received_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('is_read', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('size_bytes', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['temp_address_id'], ['temp_address.id'], ondelete='CASCADE'),
        sa.CheckConstraint('size_bytes >= 0', name='ck_inbound_message_size_bytes'),
    )

    op.create_index('ix_inbound_message_temp_address_id', 'inbound_message', ['temp_address_id'])

    # Inbox listing: newest first per address
    op.create_index(
        'idx_inbound_address_received',
        'inbound_message',
        ['temp_address_id', sa.text('received_at DESC')],
    )

    op.create_index('idx_inbound_recipient', 'inbound_message', ['recipient_email'])

    # Retention job deletes by age
    op.create_index('idx_inbound_received_at', 'inbound_message', ['received_at'])


def downgrade():
    op.drop_index('idx_inbound_received_at', table_name='inbound_message')
    op.drop_index('idx_inbound_recipient', table_name='inbound_message')
    op.drop_index('idx_inbound_address_received', table_name='inbound_message')
    op.drop_index('ix_inbound_message_temp_address_id', table_name='inbound_message')
    op.drop_table('inbound_message')
