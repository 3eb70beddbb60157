from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class AuthUser(BaseModel):
    """
    Represents an authenticated caller from a Supabase (or service-role) JWT.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="sub")
    email: Optional[EmailStr] = None
    role: str = "authenticated"
    app_metadata: dict = Field(default_factory=dict)

    @property
    def is_admin(self) -> bool:
        roles = self.app_metadata.get("roles") or []
        return "admin" in roles or self.role == "service_role"

    @property
    def is_service(self) -> bool:
        return self.role == "service_role"
