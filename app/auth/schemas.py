from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Lightweight representation of the authenticated user for role checks.

    external_uid is the identity-provider subject carried in the bearer token.
    """

    id: UUID
    external_uid: str
    email: str
    role: str
    full_name: Optional[str] = None
