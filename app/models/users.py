"""
User Data Models

The authenticated caller as decoded from the identity provider's token.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class User(BaseModel):
    uid: str = Field(..., description="Identity provider user ID")
    email: Optional[str] = None
    full_name: Optional[str] = None
    roles: List[str] = Field(default_factory=list, description="Granted roles")
    disabled: Optional[bool] = None

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles
