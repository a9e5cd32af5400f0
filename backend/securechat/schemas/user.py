from pydantic import BaseModel, EmailStr, Field, field_validator


class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)

    @field_validator("username")
    @classmethod
    def username_stripped(cls, v: str) -> str:
        if v != v.strip() or any(c.isspace() for c in v):
            raise ValueError("Username must not contain whitespace")
        return v


class UserLogin(BaseModel):
    # Either the username or the email address
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class AuthResponse(BaseModel):
    success: bool = True
    username: str


class SessionUser(BaseModel):
    id: int
    username: str
    email: str

    model_config = {"from_attributes": True}


class SessionStatus(BaseModel):
    authenticated: bool
    user: SessionUser | None = None


class RosterEntry(BaseModel):
    id: int
    username: str
    avatar_url: str | None = None

    model_config = {"from_attributes": True}
