"""
Claim model representing an inbound claim or objection event.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from claim_routing.core.models.company import normalize_nit


class Claim(BaseModel):
    """
    Immutable claim event as received from the queue or the API.

    Field aliases are the wire names (PascalCase); snake_case names are
    accepted too.

    Attributes:
        process_id: Upstream process identifier
        target: Tax ID of the company that receives the claim (owns the rules)
        source: Tax ID of the company that raised the claim
        document_number: Invoice/document number
        invoice_amount: Invoice total
        external_reference: Upstream reference
        claim_id: Claim identifier
        concept_application_code: Concept the claim applies to
        objection_code: Objection code ("" for plain claims)
        value: Disputed value, compared against rule amount ranges
    """

    process_id: int = Field(..., alias="ProcessId")
    target: str = Field(..., alias="Target", min_length=1, max_length=30)
    source: str = Field(..., alias="Source", min_length=1, max_length=30)
    document_number: str = Field(..., alias="DocumentNumber", min_length=1, max_length=100)
    invoice_amount: float = Field(..., alias="InvoiceAmount", ge=0)
    external_reference: str = Field(..., alias="ExternalReference", max_length=255)
    claim_id: str = Field(..., alias="ClaimId", min_length=1, max_length=100)
    concept_application_code: str = Field(..., alias="ConceptApplicationCode", max_length=100)
    objection_code: str = Field(..., alias="ObjectionCode", max_length=100)
    value: float = Field(..., alias="Value", ge=0)

    class Config:
        frozen = True
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "ProcessId": 1001,
                "Target": "900123456",
                "Source": "800000513",
                "DocumentNumber": "FE-2024-0001",
                "InvoiceAmount": 250000,
                "ExternalReference": "EXT-77",
                "ClaimId": "CLM-555",
                "ConceptApplicationCode": "TAR",
                "ObjectionCode": "OBJ-01",
                "Value": 200000,
            }
        }

    @field_validator(
        "target",
        "source",
        "document_number",
        "external_reference",
        "claim_id",
        "concept_application_code",
        "objection_code",
        mode="before",
    )
    @classmethod
    def coerce_to_string(cls, v: Any) -> Any:
        """Accept numeric identifiers and strip surrounding whitespace."""
        if isinstance(v, bool):
            return v
        if isinstance(v, (int, float)):
            return str(v)
        if isinstance(v, str):
            return v.strip()
        return v

    @property
    def natural_key(self) -> tuple[str, str]:
        """(claim_id, document_number), the de-duplication key."""
        return (self.claim_id, self.document_number)

    @property
    def normalized_source(self) -> str:
        return normalize_nit(self.source)

    @property
    def assignment_type(self) -> str:
        """
        Routing label stored on the assignment.

        Objections are labelled by objection code, plain claims by their
        concept-application code.
        """
        if self.objection_code:
            return f"OBJECTION_{self.objection_code}"
        if self.concept_application_code:
            return f"CLAIM_{self.concept_application_code}"
        return "CLAIM_PROCESSING"

    def to_wire(self) -> dict[str, Any]:
        """Serialize using the wire field names."""
        return self.model_dump(by_alias=True)
