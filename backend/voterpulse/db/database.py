"""
Database models and connection management

This module defines SQLAlchemy models for all database tables and provides
database connection management and initialization.

Models:
- Organization, User, OrganizationMember: tenants and their members
- Voter: one row per person per tenant, unique on (organization_id, state_voter_id)
- ElectionHistory: past elections a voter took part in, unique on (voter_id, election_date)
- VoterList, VoterListMember: static and dynamic contact lists
- Interaction: append-only contact log
- Script: canvass / phone-bank scripts
- ImportJob: persisted checkpoint of a bulk import

Example:
    ```python
    from voterpulse.db.database import AsyncSessionLocal, Voter

    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(Voter).where(
                Voter.organization_id == org_id,
                Voter.state_voter_id == "V000123"
            )
        )
        voter = result.scalar_one_or_none()
    ```
"""
import logging
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column, String, DateTime, Integer, Text, JSON, Index, text, UniqueConstraint,
    Boolean, ForeignKey, CheckConstraint, event
)
from datetime import datetime

from voterpulse.config import config

logger = logging.getLogger(__name__)

Base = declarative_base()


class Organization(Base):
    """Tenant organization"""
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), unique=True, nullable=False)
    description = Column(Text)
    settings = Column(JSON, default=dict)  # e.g. {"default_list_type": "canvass"}
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class User(Base):
    """Application user (identity is provided by the session layer)"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String(255), unique=True, nullable=True)
    email = Column(String(255), unique=True, nullable=False)
    first_name = Column(String(100))
    last_name = Column(String(100))
    created_at = Column(DateTime, default=datetime.utcnow)


class OrganizationMember(Base):
    """Membership of a user in an organization"""
    __tablename__ = "organization_members"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), nullable=False, default="volunteer")  # 'admin', 'manager', 'volunteer'
    status = Column(String(20), nullable=False, default="active")  # 'active', 'invited', 'disabled'
    permissions = Column(JSON, default=dict)  # e.g. {"can_import_data": true}
    joined_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('organization_id', 'user_id', name='uq_org_member'),
    )


class TeamInvitation(Base):
    """Pending invitation of an email address into an organization"""
    __tablename__ = "team_invitations"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="volunteer")
    token = Column(String(64), unique=True, nullable=False)
    invited_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    accepted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Voter(Base):
    """Voter record, deduplicated per tenant by state-issued voter id"""
    __tablename__ = "voters"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)

    state_voter_id = Column(String(50))
    legacy_id = Column(String(50))

    first_name = Column(String(100))
    middle_name = Column(String(100))
    last_name = Column(String(100))
    name_suffix = Column(String(20))

    house_number = Column(String(20))
    street_name = Column(String(255))
    unit_type = Column(String(20))
    unit_number = Column(String(20))
    address2 = Column(String(255))
    city = Column(String(100))
    state = Column(String(2))
    zip_code = Column(String(10))

    mail_address = Column(String(255))
    mail_city = Column(String(100))
    mail_state = Column(String(2))
    mail_zip_code = Column(String(10))

    phone = Column(String(20))
    email = Column(String(255))

    dob_year = Column(Integer)
    gender = Column(String(10))
    party = Column(String(50))

    county_code = Column(String(10))
    county_name = Column(String(100))
    state_mcd_code = Column(String(20))
    mcd_name = Column(String(100))
    precinct_code = Column(String(20))
    precinct_name = Column(String(100))
    ward_code = Column(String(10))

    school_district = Column(String(20))
    school_sub_district = Column(String(20))
    judicial_district = Column(String(10))
    legislative_district = Column(String(10))
    state_senate_district = Column(String(10))
    congressional_district = Column(String(10))
    commissioner_district = Column(String(10))
    park_district = Column(String(20))
    soil_water_district = Column(String(20))
    hospital_district = Column(String(20))

    support_level = Column(Integer)  # 1 = strong support ... 5 = strong oppose
    notes = Column(Text)

    registration_date = Column(String(10))  # ISO YYYY-MM-DD
    permanent_absentee = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('organization_id', 'state_voter_id', name='uq_voter_org_state_id'),
        CheckConstraint('support_level IS NULL OR (support_level BETWEEN 1 AND 5)', name='ck_voter_support_level'),
        Index('idx_voter_name', 'last_name', 'first_name'),
        Index('idx_voter_org_city', 'organization_id', 'city'),
        Index('idx_voter_org_zip', 'organization_id', 'zip_code'),
        Index('idx_voter_org_county', 'organization_id', 'county_code'),
        Index('idx_voter_org_precinct', 'organization_id', 'precinct_code'),
        Index('idx_voter_org_congressional', 'organization_id', 'congressional_district'),
        Index('idx_voter_org_legislative', 'organization_id', 'legislative_district'),
        Index('idx_voter_org_support', 'organization_id', 'support_level'),
    )


class ElectionHistory(Base):
    """One row per (voter, election)"""
    __tablename__ = "election_history"

    id = Column(Integer, primary_key=True, index=True)
    voter_id = Column(Integer, ForeignKey("voters.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    election_date = Column(String(10), nullable=False)  # ISO YYYY-MM-DD
    election_description = Column(String(255))
    election_type = Column(String(50))
    voting_method = Column(String(50))
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('voter_id', 'election_date', name='uq_election_voter_date'),
        Index('idx_election_org_date', 'organization_id', 'election_date'),
    )


class VoterList(Base):
    """Named collection of voters; dynamic lists are driven by filter_criteria"""
    __tablename__ = "voter_lists"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    type = Column(String(20), nullable=False, default="custom")  # 'canvass', 'phonebank', 'mailing', 'custom'
    is_public = Column(Boolean, default=False)
    is_dynamic = Column(Boolean, default=False)
    filter_criteria = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class VoterListMember(Base):
    """List membership with add audit pair"""
    __tablename__ = "voter_list_members"

    id = Column(Integer, primary_key=True, index=True)
    list_id = Column(Integer, ForeignKey("voter_lists.id", ondelete="CASCADE"), nullable=False, index=True)
    voter_id = Column(Integer, ForeignKey("voters.id", ondelete="CASCADE"), nullable=False, index=True)
    added_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    added_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('list_id', 'voter_id', name='uq_list_member'),
    )


class Script(Base):
    """Canvass / phone-bank script"""
    __tablename__ = "scripts"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    name = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    type = Column(String(20), nullable=False)  # 'canvass', 'phonebank', 'email'
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Interaction(Base):
    """Append-only contact log entry"""
    __tablename__ = "interactions"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    voter_id = Column(Integer, ForeignKey("voters.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    script_id = Column(Integer, ForeignKey("scripts.id", ondelete="SET NULL"), nullable=True)
    list_id = Column(Integer, ForeignKey("voter_lists.id", ondelete="SET NULL"), nullable=True)
    type = Column(String(20), nullable=False)  # 'canvass', 'phone', 'text', 'email'
    result = Column(String(20), nullable=True)
    support_level = Column(Integer)
    notes = Column(Text)
    duration = Column(Integer)  # seconds
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    __table_args__ = (
        CheckConstraint('support_level IS NULL OR (support_level BETWEEN 1 AND 5)', name='ck_interaction_support_level'),
        Index('idx_interaction_org_created', 'organization_id', 'created_at'),
    )


class CustomFieldDefinition(Base):
    """Organization-defined voter attribute"""
    __tablename__ = "custom_field_definitions"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    field_name = Column(String(100), nullable=False)  # stable key, unique per organization
    field_label = Column(String(255), nullable=False)
    field_type = Column(String(20), nullable=False)  # 'text', 'number', 'date', 'boolean', 'select', 'multiselect'
    options = Column(JSON, nullable=True)  # choices for select types
    is_required = Column(Boolean, default=False)
    sort_order = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('organization_id', 'field_name', name='uq_custom_field_org_name'),
    )


class CustomFieldValue(Base):
    """Value of one custom field for one voter"""
    __tablename__ = "custom_field_values"

    id = Column(Integer, primary_key=True, index=True)
    field_id = Column(Integer, ForeignKey("custom_field_definitions.id", ondelete="CASCADE"), nullable=False, index=True)
    voter_id = Column(Integer, ForeignKey("voters.id", ondelete="CASCADE"), nullable=False, index=True)
    value = Column(JSON, nullable=True)  # shape follows the definition's field_type
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('field_id', 'voter_id', name='uq_custom_field_value'),
    )


class ImportJob(Base):
    """Persisted checkpoint of a bulk import run"""
    __tablename__ = "import_jobs"

    id = Column(String, primary_key=True, index=True)  # UUID
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    type = Column(String(30), nullable=False)  # 'voters', 'election_history'
    status = Column(String(20), nullable=False, default="pending", index=True)  # 'pending', 'processing', 'completed', 'failed'
    file_name = Column(String(255))
    total_rows = Column(Integer, default=0)
    processed_rows = Column(Integer, default=0)
    success_rows = Column(Integer, default=0)
    error_rows = Column(Integer, default=0)
    skipped_rows = Column(Integer, default=0)
    imported_rows = Column(Integer, default=0)
    updated_rows = Column(Integer, default=0)
    election_records = Column(Integer, default=0)
    column_mapping = Column(JSON)
    errors = Column(JSON, default=list)  # [{row, field?, message}], capped
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index('idx_import_job_org_created', 'organization_id', 'created_at'),
    )


# Database setup - use centralized config
DATABASE_URL = config.DATABASE_URL


def async_database_url(url: str) -> str:
    """
    Add the async driver to a driver-less URL.

    Only a bare ``sqlite://`` or ``postgresql://`` prefix is rewritten; URLs
    that already name a driver are returned unchanged.
    """
    if url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + url[len("sqlite://"):]
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://"):]
    return url


def create_database_engine(url: str) -> AsyncEngine:
    """Create the async engine with pool settings for the URL's backend"""
    url = async_database_url(url)
    if not url.startswith("sqlite"):
        return create_async_engine(
            url,
            echo=False,
            future=True,
            pool_pre_ping=True,
            pool_size=config.POSTGRES_POOL_SIZE,
            max_overflow=config.POSTGRES_MAX_OVERFLOW,
            pool_timeout=120.0,
            pool_recycle=3600
        )

    # SQLite works better with smaller pools due to file-based locking
    sqlite_engine = create_async_engine(
        url,
        echo=False,
        future=True,
        pool_pre_ping=True,
        pool_size=config.SQLITE_POOL_SIZE,
        max_overflow=config.SQLITE_MAX_OVERFLOW,
        pool_timeout=120.0,
        pool_recycle=3600,
        connect_args={
            "timeout": 120.0,
        }
    )

    @event.listens_for(sqlite_engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        # Cascades on voters/lists rely on SQLite enforcing foreign keys
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=60000")
        cursor.close()

    return sqlite_engine


engine = create_database_engine(DATABASE_URL)


AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def init_db():
    """Create tables and configure SQLite for concurrent readers"""
    logger.info("Starting database initialization...")

    async with engine.begin() as conn:
        if config.is_sqlite():
            try:
                await conn.execute(text("PRAGMA journal_mode=WAL"))
                await conn.execute(text("PRAGMA synchronous=NORMAL"))
                logger.info("SQLite WAL mode enabled")
            except Exception as e:
                logger.warning(f"Could not configure WAL mode: {e}")

        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables initialized successfully")


async def drop_db():
    """Drop every table (used by tests and local resets)"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
