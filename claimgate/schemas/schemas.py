"""
Pydantic schemas for request/response bodies.

Used both for the portal API wire format (camelCase) and for the portal
shell's own JSON endpoints, which accept either spelling.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from claimgate.models.claim import ClaimStatus


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ── Auth ──

class Credentials(WireModel):
    email: str
    password: str = Field(repr=False)


class AuthGrant(WireModel):
    """`{token, user}` returned by the login and verify-otp endpoints."""

    token: str
    user: dict[str, Any] | None = None


class OtpRequest(WireModel):
    mobile_number: str


class OtpVerify(WireModel):
    otp: str


# ── Claims ──

class ClaimSubmission(WireModel):
    policy_id: str
    crop: str | None = None
    damage_type: str | None = None
    incident_date: str | None = None
    description: str | None = None
    estimated_loss: float | None = None


class ForwardToSp(WireModel):
    admin_notes: str | None = None


class RejectAiReport(WireModel):
    reason: str = ""
    admin_notes: str | None = None


class AdminOverride(WireModel):
    admin_override_reason: str = ""
    status: ClaimStatus = ClaimStatus.PENDING


class AdminEdit(WireModel):
    status: ClaimStatus
    assigned_to: str | None = None
    reassign_to: str | None = None
    admin_override_reason: str | None = None


class SpDecision(WireModel):
    status: Literal["approved", "rejected"]
    resolution_details: str | None = None


# ── Registration review ──

class ApprovalDecision(WireModel):
    approved: bool
    rejection_reason: str | None = Field(default=None)
