from datetime import datetime

from pydantic import BaseModel, Field, computed_field


class User(BaseModel):
    user_id: str
    username: str
    password_hash: str
    roles: list[str] = ["USER"]
    created_at: datetime


class FileRecord(BaseModel):
    file_id: str
    owner_id: str
    filename: str
    content_type: str
    size: int
    uploaded_at: datetime

    @computed_field
    @property
    def display_size(self) -> str:
        return f"{self.size / (1024 * 1024):.2f} MB"


class RefreshCredential(BaseModel):
    token_id: str
    token: str
    username: str
    expires_at: datetime


class RegisterRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class LoginRequest(BaseModel):
    username: str
    password: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    username: str | None = None
    message: str


class MessageResponse(BaseModel):
    message: str


class FileListResponse(BaseModel):
    files: list[FileRecord]


class UsageResponse(BaseModel):
    usage: int
