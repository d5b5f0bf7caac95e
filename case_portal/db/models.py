"""
SQLAlchemy Models for Database
==============================

Schema for the case-access subsystem:
- Users (clients, lawyers, administrators)
- Cases owned by clients
- Case access grants (lawyer request / approval lifecycle)

Supports both PostgreSQL and SQLite via SQLAlchemy.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Column, String, Text, Integer, Boolean, DateTime, Enum, ForeignKey,
    Index, text
)
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()


def generate_uuid():
    return str(uuid.uuid4())


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, enum.Enum):
    """Application roles"""
    CLIENT = "client"
    LAWYER = "lawyer"
    ADMIN = "admin"


class CaseStatus(str, enum.Enum):
    """Case lifecycle status"""
    OPEN = "open"
    CLOSED = "closed"
    ARCHIVED = "archived"


class CaseCategory(str, enum.Enum):
    """Area of law"""
    CRIMINAL_LAW = "criminal_law"
    CIVIL_LAW = "civil_law"
    CORPORATE_LAW = "corporate_law"
    FAMILY_LAW = "family_law"
    IMMIGRATION_LAW = "immigration_law"
    INTELLECTUAL_PROPERTY = "intellectual_property"
    LABOR_LAW = "labor_law"
    REAL_ESTATE = "real_estate"
    TAX_LAW = "tax_law"
    OTHER = "other"


class GrantStatus(str, enum.Enum):
    """
    Access grant lifecycle.

    PENDING is the only non-terminal state. PENDING and APPROVED are "active":
    at most one active grant may exist per (case, lawyer).
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"

    @property
    def is_active(self) -> bool:
        return self in (GrantStatus.PENDING, GrantStatus.APPROVED)


# SQLAlchemy's Enum column stores member names, so the partial index predicate
# is written against names.
_ACTIVE_GRANT_PREDICATE = "status IN ('PENDING', 'APPROVED')"


# =============================================================================
# USERS
# =============================================================================

class User(Base):
    """Application user"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String(255), nullable=False, unique=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    role = Column(Enum(UserRole), default=UserRole.CLIENT, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_user_role", "role"),
    )

    # Relationships
    owned_cases = relationship("Case", back_populates="owner", cascade="all, delete-orphan")
    access_grants = relationship(
        "CaseAccessGrant",
        back_populates="lawyer",
        cascade="all, delete-orphan",
        foreign_keys="CaseAccessGrant.lawyer_id",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


# =============================================================================
# CASES
# =============================================================================

class Case(Base):
    """Legal case, owned by a client"""
    __tablename__ = "cases"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(Enum(CaseCategory), default=CaseCategory.OTHER, nullable=False)
    status = Column(Enum(CaseStatus), default=CaseStatus.OPEN, nullable=False)
    priority = Column(Integer, default=2, nullable=False)  # 1 (low) .. 5 (urgent)
    owner_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_case_owner", "owner_id"),
        Index("ix_case_status", "status"),
        Index("ix_case_created", "created_at"),
    )

    # Relationships
    owner = relationship("User", back_populates="owned_cases")
    access_grants = relationship("CaseAccessGrant", back_populates="case", cascade="all, delete-orphan")


class CaseAccessGrant(Base):
    """A lawyer's request for, and possibly approval of, access to a case"""
    __tablename__ = "case_access_grants"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False)
    lawyer_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status = Column(Enum(GrantStatus), default=GrantStatus.PENDING, nullable=False)
    requested_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    decided_at = Column(DateTime, nullable=True)
    decided_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    __table_args__ = (
        Index("ix_grant_case", "case_id"),
        Index("ix_grant_lawyer", "lawyer_id"),
        Index("ix_grant_status", "status"),
        # At most one PENDING/APPROVED grant per (case, lawyer)
        Index(
            "uq_grant_active_pair",
            "case_id",
            "lawyer_id",
            unique=True,
            sqlite_where=text(_ACTIVE_GRANT_PREDICATE),
            postgresql_where=text(_ACTIVE_GRANT_PREDICATE),
        ),
    )

    # Relationships
    case = relationship("Case", back_populates="access_grants")
    lawyer = relationship("User", back_populates="access_grants", foreign_keys=[lawyer_id])
    decider = relationship("User", foreign_keys=[decided_by])
