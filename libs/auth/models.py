from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class AuthUser(BaseModel):
    """
    Represents an authenticated user from the bearer token.
    """

    user_id: str = Field(..., alias="sub")
    email: Optional[EmailStr] = None
    role: str = "authenticated"
    name: Optional[str] = None

    @property
    def customer_id(self) -> Optional[int]:
        """Numeric shop customer id, when the subject is one."""
        try:
            return int(self.user_id)
        except ValueError:
            return None
