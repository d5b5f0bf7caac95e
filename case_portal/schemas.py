"""
Pydantic Schemas for Case Portal
================================

Request bodies accepted by the HTTP layer. Responses are plain dicts wrapped
by the response policy (``{"success": ..., "data": ...}``).
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .access_requests import Decision
from .db.models import CaseCategory, CaseStatus


# =============================================================================
# CASES
# =============================================================================

class CreateCaseRequest(BaseModel):
    """Request to create a new case"""
    title: str = Field(..., min_length=1, max_length=255, description="Case title")
    description: Optional[str] = Field(None, max_length=5000, description="Case description")
    category: CaseCategory = Field(CaseCategory.OTHER, description="Area of law")
    priority: int = Field(2, ge=1, le=5, description="1 (low) .. 5 (urgent)")

    class Config:
        json_schema_extra = {
            "example": {
                "title": "Wrongful termination claim",
                "description": "Dismissed two weeks after reporting a safety issue",
                "category": "labor_law",
                "priority": 3,
            }
        }


class UpdateCaseRequest(BaseModel):
    """Partial update of an existing case; omitted fields are left alone"""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    category: Optional[CaseCategory] = None
    status: Optional[CaseStatus] = None
    priority: Optional[int] = Field(None, ge=1, le=5)


# =============================================================================
# ACCESS REQUESTS
# =============================================================================

class DecideAccessRequest(BaseModel):
    """Owner decision on a lawyer's pending access request"""
    lawyer_id: str = Field(..., min_length=1, description="Requesting lawyer")
    action: Decision = Field(..., description="approve or reject")


class GrantStatusFilter(str, Enum):
    """Status filter for an owner's request listing; ALL disables filtering"""
    ALL = "all"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


# =============================================================================
# SYSTEM
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response"""
    status: str = "healthy"
    version: str
    database: str
