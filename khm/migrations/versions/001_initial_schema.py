"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2025-06-02 12:00:00.000000

Creates the keys and flows tables. Servers that predate migration tracking
already have both tables, so each one is only created when missing.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    inspector = sa.inspect(op.get_bind())

    # Unique (host, key) pairs
    if not inspector.has_table('keys'):
        op.create_table('keys',
            sa.Column('key_id', sa.Integer(), autoincrement=True, nullable=False),
            sa.Column('host', sa.String(length=255), nullable=False),
            sa.Column('key', sa.Text(), nullable=False),
            sa.Column('updated', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('key_id'),
            sa.UniqueConstraint('host', 'key', name='unique_host_key')
        )

    # Flow membership
    if not inspector.has_table('flows'):
        op.create_table('flows',
            sa.Column('flow_id', sa.Integer(), autoincrement=True, nullable=False),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('key_id', sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(['key_id'], ['keys.key_id'], name='fk_key', ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('flow_id'),
            sa.UniqueConstraint('name', 'key_id', name='unique_flow_key')
        )
        op.create_index(op.f('ix_flows_name'), 'flows', ['name'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_flows_name'), table_name='flows')
    op.drop_table('flows')
    op.drop_table('keys')
