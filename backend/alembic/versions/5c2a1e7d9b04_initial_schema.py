"""Initial schema

Revision ID: 5c2a1e7d9b04
Revises:
Create Date: 2026-10-19 09:12:44.118203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5c2a1e7d9b04'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create tenants, voters, lists, contact log and import jobs."""
    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=100), nullable=False, unique=True),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
    )
    op.create_index('ix_organizations_id', 'organizations', ['id'])

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('external_id', sa.String(length=255), unique=True),
        sa.Column('email', sa.String(length=255), nullable=False, unique=True),
        sa.Column('first_name', sa.String(length=100)),
        sa.Column('last_name', sa.String(length=100)),
        sa.Column('created_at', sa.DateTime()),
    )
    op.create_index('ix_users_id', 'users', ['id'])

    op.create_table(
        'organization_members',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('permissions', sa.JSON()),
        sa.Column('joined_at', sa.DateTime()),
        sa.UniqueConstraint('organization_id', 'user_id', name='uq_org_member'),
    )
    op.create_index('ix_organization_members_id', 'organization_members', ['id'])
    op.create_index('ix_organization_members_organization_id', 'organization_members', ['organization_id'])
    op.create_index('ix_organization_members_user_id', 'organization_members', ['user_id'])

    voter_strings = [
        ('state_voter_id', 50), ('legacy_id', 50),
        ('first_name', 100), ('middle_name', 100), ('last_name', 100), ('name_suffix', 20),
        ('house_number', 20), ('street_name', 255), ('unit_type', 20), ('unit_number', 20),
        ('address2', 255), ('city', 100), ('state', 2), ('zip_code', 10),
        ('mail_address', 255), ('mail_city', 100), ('mail_state', 2), ('mail_zip_code', 10),
        ('phone', 20), ('email', 255),
    ]
    district_strings = [
        ('gender', 10), ('party', 50),
        ('county_code', 10), ('county_name', 100), ('state_mcd_code', 20), ('mcd_name', 100),
        ('precinct_code', 20), ('precinct_name', 100), ('ward_code', 10),
        ('school_district', 20), ('school_sub_district', 20), ('judicial_district', 10),
        ('legislative_district', 10), ('state_senate_district', 10), ('congressional_district', 10),
        ('commissioner_district', 10), ('park_district', 20), ('soil_water_district', 20),
        ('hospital_district', 20),
    ]
    op.create_table(
        'voters',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        *[sa.Column(name, sa.String(length=length)) for name, length in voter_strings],
        sa.Column('dob_year', sa.Integer()),
        *[sa.Column(name, sa.String(length=length)) for name, length in district_strings],
        sa.Column('support_level', sa.Integer()),
        sa.Column('notes', sa.Text()),
        sa.Column('registration_date', sa.String(length=10)),
        sa.Column('permanent_absentee', sa.Boolean()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('organization_id', 'state_voter_id', name='uq_voter_org_state_id'),
        sa.CheckConstraint('support_level IS NULL OR (support_level BETWEEN 1 AND 5)', name='ck_voter_support_level'),
    )
    op.create_index('ix_voters_id', 'voters', ['id'])
    op.create_index('ix_voters_organization_id', 'voters', ['organization_id'])
    op.create_index('idx_voter_name', 'voters', ['last_name', 'first_name'])
    for suffix, column in [
        ('city', 'city'),
        ('zip', 'zip_code'),
        ('county', 'county_code'),
        ('precinct', 'precinct_code'),
        ('congressional', 'congressional_district'),
        ('legislative', 'legislative_district'),
        ('support', 'support_level'),
    ]:
        op.create_index(f'idx_voter_org_{suffix}', 'voters', ['organization_id', column])

    op.create_table(
        'election_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('voter_id', sa.Integer(), sa.ForeignKey('voters.id', ondelete='CASCADE'), nullable=False),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('election_date', sa.String(length=10), nullable=False),
        sa.Column('election_description', sa.String(length=255)),
        sa.Column('election_type', sa.String(length=50)),
        sa.Column('voting_method', sa.String(length=50)),
        sa.Column('created_at', sa.DateTime()),
        sa.UniqueConstraint('voter_id', 'election_date', name='uq_election_voter_date'),
    )
    op.create_index('ix_election_history_id', 'election_history', ['id'])
    op.create_index('ix_election_history_voter_id', 'election_history', ['voter_id'])
    op.create_index('ix_election_history_organization_id', 'election_history', ['organization_id'])
    op.create_index('idx_election_org_date', 'election_history', ['organization_id', 'election_date'])

    op.create_table(
        'voter_lists',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('is_public', sa.Boolean()),
        sa.Column('is_dynamic', sa.Boolean()),
        sa.Column('filter_criteria', sa.JSON()),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
    )
    op.create_index('ix_voter_lists_id', 'voter_lists', ['id'])
    op.create_index('ix_voter_lists_organization_id', 'voter_lists', ['organization_id'])

    op.create_table(
        'voter_list_members',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('list_id', sa.Integer(), sa.ForeignKey('voter_lists.id', ondelete='CASCADE'), nullable=False),
        sa.Column('voter_id', sa.Integer(), sa.ForeignKey('voters.id', ondelete='CASCADE'), nullable=False),
        sa.Column('added_by', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('added_at', sa.DateTime()),
        sa.UniqueConstraint('list_id', 'voter_id', name='uq_list_member'),
    )
    op.create_index('ix_voter_list_members_id', 'voter_list_members', ['id'])
    op.create_index('ix_voter_list_members_list_id', 'voter_list_members', ['list_id'])
    op.create_index('ix_voter_list_members_voter_id', 'voter_list_members', ['voter_id'])

    op.create_table(
        'scripts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('is_active', sa.Boolean()),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
    )
    op.create_index('ix_scripts_id', 'scripts', ['id'])
    op.create_index('ix_scripts_organization_id', 'scripts', ['organization_id'])

    op.create_table(
        'interactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('voter_id', sa.Integer(), sa.ForeignKey('voters.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('script_id', sa.Integer(), sa.ForeignKey('scripts.id', ondelete='SET NULL')),
        sa.Column('list_id', sa.Integer(), sa.ForeignKey('voter_lists.id', ondelete='SET NULL')),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('result', sa.String(length=20)),
        sa.Column('support_level', sa.Integer()),
        sa.Column('notes', sa.Text()),
        sa.Column('duration', sa.Integer()),
        sa.Column('created_at', sa.DateTime()),
        sa.CheckConstraint('support_level IS NULL OR (support_level BETWEEN 1 AND 5)', name='ck_interaction_support_level'),
    )
    op.create_index('ix_interactions_id', 'interactions', ['id'])
    op.create_index('ix_interactions_organization_id', 'interactions', ['organization_id'])
    op.create_index('ix_interactions_voter_id', 'interactions', ['voter_id'])
    op.create_index('ix_interactions_user_id', 'interactions', ['user_id'])
    op.create_index('ix_interactions_created_at', 'interactions', ['created_at'])
    op.create_index('idx_interaction_org_created', 'interactions', ['organization_id', 'created_at'])

    op.create_table(
        'import_jobs',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('type', sa.String(length=30), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('file_name', sa.String(length=255)),
        *[
            sa.Column(name, sa.Integer())
            for name in (
                'total_rows', 'processed_rows', 'success_rows', 'error_rows',
                'skipped_rows', 'imported_rows', 'updated_rows', 'election_records',
            )
        ],
        sa.Column('column_mapping', sa.JSON()),
        sa.Column('errors', sa.JSON()),
        sa.Column('started_at', sa.DateTime()),
        sa.Column('completed_at', sa.DateTime()),
        sa.Column('created_at', sa.DateTime()),
    )
    op.create_index('ix_import_jobs_id', 'import_jobs', ['id'])
    op.create_index('ix_import_jobs_organization_id', 'import_jobs', ['organization_id'])
    op.create_index('ix_import_jobs_status', 'import_jobs', ['status'])
    op.create_index('ix_import_jobs_created_at', 'import_jobs', ['created_at'])
    op.create_index('idx_import_job_org_created', 'import_jobs', ['organization_id', 'created_at'])


def downgrade() -> None:
    """Drop every table in reverse dependency order."""
    for table in (
        'import_jobs',
        'interactions',
        'scripts',
        'voter_list_members',
        'voter_lists',
        'election_history',
        'voters',
        'organization_members',
        'users',
        'organizations',
    ):
        op.drop_table(table)
