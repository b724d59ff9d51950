"""
Claim value model and its two status dimensions.

    status               business-facing outcome (pending → approved/rejected)
    verification_status  AI-assist pipeline stage, orthogonal to status

Both are closed enums. Wire values are matched case-insensitively, and the
legacy stage names written by older pipeline versions are folded onto the
canonical stages.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ClaimStatus(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            normalized = value.strip().lower().replace("-", "_").replace(" ", "_")
            if normalized == "under_review":
                return cls.IN_REVIEW
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class VerificationStatus(str, Enum):
    UNSET = "unset"
    AI_PROCESSED_ADMIN_REVIEW = "AI_Processed_Admin_Review"
    FORWARDED_TO_SP = "Forwarded_To_SP"
    AI_REJECTED_MANUAL_REVIEW = "AI_Rejected_Manual_Review"
    VERIFIED = "Verified"
    FRAUD_SUSPECT = "fraud_suspect"

    @classmethod
    def _missing_(cls, value):
        if value is None or value == "":
            return cls.UNSET
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized in _LEGACY_STAGES:
                return cls(_LEGACY_STAGES[normalized])
            for member in cls:
                if member.value.lower() == normalized:
                    return member
        return None


# Older pipeline stage names → canonical stage value
_LEGACY_STAGES = {
    "pending": "unset",
    "ai_satellite_processed": "Forwarded_To_SP",
    "manual_review": "AI_Rejected_Manual_Review",
}

TERMINAL_STATUSES = frozenset({ClaimStatus.APPROVED, ClaimStatus.REJECTED})
OPEN_STATUSES = frozenset({ClaimStatus.PENDING, ClaimStatus.IN_REVIEW})

# Stages reached by leaving admin AI review (forward or reject)
POST_REVIEW_STAGES = frozenset({
    VerificationStatus.FORWARDED_TO_SP,
    VerificationStatus.AI_REJECTED_MANUAL_REVIEW,
})


@dataclass(frozen=True)
class ClaimState:
    """Joint (status, verification_status) state of a claim."""

    status: ClaimStatus
    verification_status: VerificationStatus

    def as_dict(self) -> dict[str, str]:
        return {
            "status": self.status.value,
            "verificationStatus": self.verification_status.value,
        }


def _id_of(value: Any) -> Any:
    """Reference fields arrive as a bare id or as an embedded object."""
    if isinstance(value, dict):
        value = value.get("id", value.get("_id"))
    if isinstance(value, int):
        value = str(value)
    return value


class Claim(BaseModel):
    model_config = ConfigDict(
        frozen=True, populate_by_name=True, alias_generator=to_camel, extra="ignore",
    )

    id: str = Field(validation_alias=AliasChoices("id", "_id", "claimId"))
    farmer_id: str | None = None
    assigned_to: str | None = None
    status: ClaimStatus = ClaimStatus.PENDING
    verification_status: VerificationStatus = VerificationStatus.UNSET
    admin_override_reason: str | None = None
    override_history: tuple[str, ...] = ()
    admin_notes: str | None = None
    ai_rejection_reason: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", "farmer_id", "assigned_to", mode="before")
    @classmethod
    def _coerce_reference(cls, value: Any) -> Any:
        return _id_of(value)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> ClaimStatus:
        return ClaimStatus(value)

    @field_validator("verification_status", mode="before")
    @classmethod
    def _coerce_verification(cls, value: Any) -> VerificationStatus:
        return VerificationStatus(value)

    @field_validator("override_history", mode="before")
    @classmethod
    def _coerce_history(cls, value: Any) -> Any:
        return () if value is None else value

    @property
    def state(self) -> ClaimState:
        return ClaimState(self.status, self.verification_status)

    def with_state(self, state: ClaimState, **changes: Any) -> "Claim":
        """Return a copy moved to `state`; the original is left untouched."""
        return self.model_copy(update={
            "status": state.status,
            "verification_status": state.verification_status,
            **changes,
        })
