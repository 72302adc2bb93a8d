from datetime import datetime

from pydantic import BaseModel


class UserIdentity(BaseModel):
    """An authenticated user, as handed to the session manager."""

    id: str
    email: str
    name: str
    image: str | None = None

    model_config = {"from_attributes": True}


class SessionData(BaseModel):
    """Self-contained session snapshot.

    This is what the cache stores (as JSON) and what lookups return. The
    user_* fields are a copy taken when the snapshot was written.
    """

    user_id: str
    user_email: str
    user_name: str
    user_image: str | None = None
    expires_at: datetime

    def identity(self) -> UserIdentity:
        return UserIdentity(
            id=self.user_id,
            email=self.user_email,
            name=self.user_name,
            image=self.user_image,
        )


class IssuedSession(BaseModel):
    token: str
    expires_at: datetime


class SessionRecord(BaseModel):
    token: str
    user_id: str
    expires_at: datetime

    model_config = {"from_attributes": True}
