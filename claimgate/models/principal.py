from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from claimgate.auth.roles import PrincipalStatus, Role


class Principal(BaseModel):
    """Authenticated actor, as hydrated from ``GET /auth/me``."""

    model_config = ConfigDict(
        frozen=True, populate_by_name=True, alias_generator=to_camel, extra="ignore",
    )

    id: str = Field(validation_alias=AliasChoices("id", "_id", "userId"))
    name: str = ""
    role: Role
    status: PrincipalStatus = PrincipalStatus.ACTIVE
    email: str | None = None
    mobile_number: str | None = None
    profile_photo: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_wire(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for key in ("id", "_id", "userId"):
            if isinstance(data.get(key), int):
                data[key] = str(data[key])
        if data.get("status") is None:
            data["status"] = (
                PrincipalStatus.PENDING_APPROVAL
                if data.get("isApproved") is False
                else PrincipalStatus.ACTIVE
            )
        return data

    @field_validator("role", mode="before")
    @classmethod
    def _coerce_role(cls, value: Any) -> Role:
        return Role(value)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> PrincipalStatus:
        return PrincipalStatus(value)

    @property
    def actor(self) -> str:
        """Identity string for audit logging."""
        return f"{self.role.value}:{self.id}"
