from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from simpus.core.policy import Role

class UserOut(BaseModel):
    id: str
    username: str
    role: Role
    fullname: Optional[str] = None
    nip: Optional[str] = None
    contact: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)
    fullname: Optional[str] = None
    nip: Optional[str] = None
    contact: Optional[str] = None
    role: Optional[str] = None

class LoginRequest(BaseModel):
    username: str
    password: str

class LoginResponse(BaseModel):
    token: str
    username: str
    role: Role

class UserUpdate(BaseModel):
    fullname: Optional[str] = None
    nip: Optional[str] = None
    contact: Optional[str] = None
    role: Optional[str] = None

class ProfileUpdate(BaseModel):
    fullname: Optional[str] = None
    nip: Optional[str] = None
    contact: Optional[str] = None
    password: Optional[str] = None
