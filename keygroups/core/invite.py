"""
Invite link models.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class InviteLinkData(BaseModel):
    model_config = ConfigDict(ser_json_bytes="hex", val_json_bytes="hex")

    group_id: bytes
    invite_code: str
    created_by: bytes
    # Unix seconds, 0 means the link never expires
    expires_at: int
    # 0 means unlimited
    max_uses: int
    use_count: int
    is_active: bool
    created_at: datetime

    def is_expired(self, now: int) -> bool:
        return self.expires_at != 0 and now >= self.expires_at

    def is_exhausted(self) -> bool:
        return self.max_uses != 0 and self.use_count >= self.max_uses
