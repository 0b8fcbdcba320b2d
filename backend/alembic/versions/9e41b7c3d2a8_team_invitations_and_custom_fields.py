"""team invitations and custom fields

Revision ID: 9e41b7c3d2a8
Revises: 5c2a1e7d9b04
Create Date: 2026-10-19 15:40:02.517930

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '9e41b7c3d2a8'
down_revision: Union[str, None] = '5c2a1e7d9b04'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add organization profile columns, team_invitations and the custom field tables"""
    with op.batch_alter_table('organizations') as batch_op:
        batch_op.add_column(sa.Column('description', sa.Text(), nullable=True))
        batch_op.add_column(sa.Column('settings', sa.JSON(), nullable=True))

    op.create_table(
        'team_invitations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('token', sa.String(length=64), nullable=False, unique=True),
        sa.Column('invited_by', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('accepted_at', sa.DateTime()),
        sa.Column('created_at', sa.DateTime()),
    )
    op.create_index('ix_team_invitations_id', 'team_invitations', ['id'])
    op.create_index('ix_team_invitations_organization_id', 'team_invitations', ['organization_id'])

    op.create_table(
        'custom_field_definitions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('field_name', sa.String(length=100), nullable=False),
        sa.Column('field_label', sa.String(length=255), nullable=False),
        sa.Column('field_type', sa.String(length=20), nullable=False),
        sa.Column('options', sa.JSON()),
        sa.Column('is_required', sa.Boolean()),
        sa.Column('sort_order', sa.Integer()),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
        sa.UniqueConstraint('organization_id', 'field_name', name='uq_custom_field_org_name'),
    )
    op.create_index('ix_custom_field_definitions_id', 'custom_field_definitions', ['id'])
    op.create_index('ix_custom_field_definitions_organization_id', 'custom_field_definitions', ['organization_id'])

    op.create_table(
        'custom_field_values',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('field_id', sa.Integer(), sa.ForeignKey('custom_field_definitions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('voter_id', sa.Integer(), sa.ForeignKey('voters.id', ondelete='CASCADE'), nullable=False),
        sa.Column('value', sa.JSON()),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
        sa.UniqueConstraint('field_id', 'voter_id', name='uq_custom_field_value'),
    )
    op.create_index('ix_custom_field_values_id', 'custom_field_values', ['id'])
    op.create_index('ix_custom_field_values_field_id', 'custom_field_values', ['field_id'])
    op.create_index('ix_custom_field_values_voter_id', 'custom_field_values', ['voter_id'])


def downgrade() -> None:
    """Remove the custom field tables, team_invitations and organization profile columns"""
    for table in ('custom_field_values', 'custom_field_definitions', 'team_invitations'):
        op.drop_table(table)

    with op.batch_alter_table('organizations') as batch_op:
        batch_op.drop_column('settings')
        batch_op.drop_column('description')
