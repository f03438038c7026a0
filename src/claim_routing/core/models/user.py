"""
Role and User models.

Roles are company-scoped; the user-to-role binding (User.role_ids) is global.
"""

import re
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

ROLE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9\s._-]+$")


class Role(BaseModel):
    """
    A named bucket of users inside one company.

    Attributes:
        id: Primary key
        company_id: Owning company
        name: Unique within the company, 2-100 characters
        description: Optional free text
        is_active: Inactive roles authorize nobody
        archived_at: Set when the role has been archived
    """

    id: int | None = None
    company_id: int
    name: str = Field(..., min_length=2, max_length=100)
    description: str | None = None
    is_active: bool = True
    archived_at: datetime | None = None

    @field_validator("name")
    @classmethod
    def check_name_charset(cls, v: str) -> str:
        """Restrict role names to letters, digits, spaces, dots, hyphens and underscores."""
        if not ROLE_NAME_PATTERN.match(v):
            raise ValueError(f"Role name contains invalid characters: {v!r}")
        return v

    @property
    def is_assignable(self) -> bool:
        """Whether holders of the role can receive assignments through it."""
        return self.is_active and self.archived_at is None


class User(BaseModel):
    """
    A reviewer who can receive assignments.

    Attributes:
        id: Primary key
        name: Display name
        dud: Document type + document number composite identifier
        company_id: Company the user is registered against
        is_active: Only active users are eligible
        archived_at: Archival marker, kept separate from is_active
        role_ids: Roles the user holds (any company)
    """

    id: int
    name: str
    dud: str | None = None
    company_id: int | None = None
    is_active: bool = True
    archived_at: datetime | None = None
    role_ids: list[int] = Field(default_factory=list)

    @property
    def is_eligible(self) -> bool:
        return self.is_active and self.archived_at is None

    class Config:
        json_schema_extra = {
            "example": {
                "id": 42,
                "name": "Ana Torres",
                "dud": "CC-1020304050",
                "company_id": 1,
                "is_active": True,
                "role_ids": [3],
            }
        }
