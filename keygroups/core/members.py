"""\
Membership models.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from .roles import GroupRole


class MembershipData(BaseModel):
    model_config = ConfigDict(ser_json_bytes="hex", val_json_bytes="hex")

    group_id: bytes
    member: bytes
    role: GroupRole
    permissions: int
    joined_at: datetime
    last_read_at: datetime | None = None
    is_active: bool = True
    is_muted: bool = False
    is_banned: bool = False
    invited_by: bytes
