"""
Company model and tax ID helpers.
"""

from datetime import datetime

from pydantic import BaseModel


def normalize_nit(nit: str | None) -> str:
    """
    Normalize a NIT for comparison.

    Removes hyphens and whitespace and upper-cases the check digit, so
    "800000513-k" equals "800000513K".

    Args:
        nit: Raw tax ID

    Returns:
        Normalized tax ID ("" for None)
    """
    if nit is None:
        return ""
    return "".join(ch for ch in str(nit) if ch != "-" and not ch.isspace()).upper()


class Company(BaseModel):
    """
    A tenant that owns roles and routing rules.

    Attributes:
        id: Primary key
        name: Company name
        document_type: Type of tax document (usually "NIT")
        document_number: Tax ID the company is looked up by
        is_active: Inactive companies receive no routing
        archived_at: Set when the company has been archived
    """

    id: int | None = None
    name: str
    document_type: str = "NIT"
    document_number: str
    is_active: bool = True
    archived_at: datetime | None = None

    @property
    def is_available(self) -> bool:
        return self.is_active and self.archived_at is None

    class Config:
        json_schema_extra = {
            "example": {
                "id": 1,
                "name": "Clinica Central",
                "document_type": "NIT",
                "document_number": "900123456",
                "is_active": True,
            }
        }
