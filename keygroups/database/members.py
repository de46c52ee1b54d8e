"""
Membership information.
"""

from datetime import datetime

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel

from keygroups.core.members import MembershipData
from keygroups.core.roles import GroupRole


class GroupMember(SQLModel, table=True):
    """
    One identity's standing in one group. The address is derived from the
    (group id, member) pair, so there is at most one live record per pair.
    """

    __tablename__ = "group_member"

    address: str = Field(primary_key=True)
    proof: str

    group_id: str = Field(index=True)
    member: str = Field(index=True)

    role: int = Field(default=GroupRole.MEMBER.value)
    permissions: int

    # Opaque to us; the group key encrypted for this member.
    encrypted_group_key: bytes

    joined_at: datetime = Field(sa_column=Column(DateTime(timezone=True)))
    last_read_at: datetime | None = Field(
        sa_column=Column(DateTime(timezone=True)), default=None
    )

    is_active: bool = True
    is_muted: bool = False
    is_banned: bool = False

    # Audit only
    invited_by: str

    def to_core(self) -> MembershipData:
        return MembershipData(
            group_id=bytes.fromhex(self.group_id),
            member=bytes.fromhex(self.member),
            role=GroupRole(self.role),
            permissions=self.permissions,
            joined_at=self.joined_at,
            last_read_at=self.last_read_at,
            is_active=self.is_active,
            is_muted=self.is_muted,
            is_banned=self.is_banned,
            invited_by=bytes.fromhex(self.invited_by),
        )
