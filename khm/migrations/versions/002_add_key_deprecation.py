"""Add deprecated flag to keys

Revision ID: 002_key_deprecation
Revises: 001_initial
Create Date: 2025-07-14 09:30:00.000000

Adds the deprecated column used by the deprecate/restore lifecycle. Existing
rows become active keys.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic
revision = '002_key_deprecation'
down_revision = '001_initial'
branch_labels = None
depends_on = None


def upgrade() -> None:
    columns = {column['name'] for column in sa.inspect(op.get_bind()).get_columns('keys')}
    if 'deprecated' not in columns:
        op.add_column('keys', sa.Column(
            'deprecated',
            sa.Boolean(),
            nullable=False,
            server_default=sa.false()
        ))


def downgrade() -> None:
    with op.batch_alter_table('keys') as batch_op:
        batch_op.drop_column('deprecated')
