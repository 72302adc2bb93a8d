from datetime import datetime

from pydantic import BaseModel, Field


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=8, max_length=128)


class UserLogin(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class UserRead(BaseModel):
    id: str
    name: str
    email: str
    image: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class LoginResponse(BaseModel):
    user_id: str
    expires_at: datetime
