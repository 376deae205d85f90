from pydantic import BaseModel

from app.core.enums import SecurityAction


class SecurityActionRequest(BaseModel):
    action: SecurityAction
