from typing import Optional

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Identity taken from the auth provider's access token. Never stored locally."""
    id: str
    email: Optional[str] = None
