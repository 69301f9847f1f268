"""Pydantic request models for API endpoints."""

from pydantic import BaseModel, Field


class StartSessionBody(BaseModel):
    character_id: str


class MessageBody(BaseModel):
    text: str


class CreateGroupBody(BaseModel):
    name: str
    user_ids: list[str] = Field(default_factory=list)
    character_ids: list[str] = Field(default_factory=list)


class AutoChatBody(BaseModel):
    enabled: bool


class CheckConnectionBody(BaseModel):
    provider_url: str
    api_key: str = ""
    provider_format: str = "koboldcpp"
