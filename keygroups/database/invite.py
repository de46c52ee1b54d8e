"""
Invite link ORM.
"""

from datetime import datetime

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel

from keygroups.core.invite import InviteLinkData


class InviteLink(SQLModel, table=True):
    __tablename__ = "invite_link"

    address: str = Field(primary_key=True)
    proof: str

    group_id: str = Field(index=True)
    invite_code: str
    created_by: str

    expires_at: int = 0
    max_uses: int = 0
    use_count: int = 0

    # Once false, never true again
    is_active: bool = True

    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True)))

    def to_core(self) -> InviteLinkData:
        return InviteLinkData(
            group_id=bytes.fromhex(self.group_id),
            invite_code=self.invite_code,
            created_by=bytes.fromhex(self.created_by),
            expires_at=self.expires_at,
            max_uses=self.max_uses,
            use_count=self.use_count,
            is_active=self.is_active,
            created_at=self.created_at,
        )
