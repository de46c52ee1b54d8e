"""
Core group data models.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class CreateGroupFlags(BaseModel):
    is_public: bool = False
    is_searchable: bool = False
    invite_only: bool = False
    allow_member_invites: bool = False


class GroupData(BaseModel):
    model_config = ConfigDict(ser_json_bytes="hex", val_json_bytes="hex")

    group_id: bytes
    owner: bytes
    public_code: str
    name: str
    description: str
    avatar: str

    is_public: bool
    is_searchable: bool
    invite_only: bool

    max_members: int
    allow_member_invites: bool
    require_approval: bool

    enable_replies: bool
    enable_reactions: bool
    enable_read_receipts: bool
    enable_typing_indicators: bool

    member_count: int
    created_at: datetime
    updated_at: datetime


class CodeLookupData(BaseModel):
    model_config = ConfigDict(ser_json_bytes="hex", val_json_bytes="hex")

    public_code: str
    group_id: bytes
