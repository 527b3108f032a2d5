"""Add assignments.due_date

Revision ID: marking_app_003
Revises: marking_app_002
Create Date: 2026-03-11

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'marking_app_003'
down_revision = 'marking_app_002'
branch_labels = None
depends_on = None


def _has_due_date():
    columns = sa.inspect(op.get_bind()).get_columns('assignments')
    return any(column['name'] == 'due_date' for column in columns)


def upgrade():
    # Databases created with db.create_all() already have the column
    if not _has_due_date():
        op.add_column('assignments', sa.Column('due_date', sa.DateTime(), nullable=True))


def downgrade():
    if _has_due_date():
        with op.batch_alter_table('assignments') as batch_op:
            batch_op.drop_column('due_date')
