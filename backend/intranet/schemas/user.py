from pydantic import BaseModel, EmailStr
from datetime import datetime
from typing import Optional


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UserInfo(BaseModel):
    id: int
    email: EmailStr
    first_name: str
    last_name: str
    role: str
    position: Optional[str] = None

    model_config = {
        "from_attributes": True
    }


class TokenResponse(BaseModel):
    access_token: str
    token_type: str
    user: UserInfo


class ProfileResponse(UserInfo):
    is_active: bool = True
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
