"""
Group ORM
"""

from datetime import datetime

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel

from keygroups.core.group import CodeLookupData, GroupData


class Group(SQLModel, table=True):
    # Derived from the group id, see AddressScheme.group
    address: str = Field(primary_key=True)
    proof: str

    group_id: str = Field(index=True)
    owner: str = Field(index=True)

    # Empty until set_group_code is called
    public_code: str = ""
    name: str
    description: str = ""
    avatar: str = ""

    is_public: bool = False
    is_searchable: bool = False
    invite_only: bool = False

    # 0 is unlimited
    max_members: int = 0
    allow_member_invites: bool = False
    require_approval: bool = False

    enable_replies: bool = True
    enable_reactions: bool = True
    enable_read_receipts: bool = True
    enable_typing_indicators: bool = True

    group_encryption_key: bytes

    # Maintained incrementally by every membership change, never recounted.
    member_count: int = 0

    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True)))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True)))

    def to_core(self) -> GroupData:
        """
        Convert this Group ORM object to a GroupData core object.
        """
        return GroupData(
            group_id=bytes.fromhex(self.group_id),
            owner=bytes.fromhex(self.owner),
            public_code=self.public_code,
            name=self.name,
            description=self.description,
            avatar=self.avatar,
            is_public=self.is_public,
            is_searchable=self.is_searchable,
            invite_only=self.invite_only,
            max_members=self.max_members,
            allow_member_invites=self.allow_member_invites,
            require_approval=self.require_approval,
            enable_replies=self.enable_replies,
            enable_reactions=self.enable_reactions,
            enable_read_receipts=self.enable_read_receipts,
            enable_typing_indicators=self.enable_typing_indicators,
            member_count=self.member_count,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class CodeLookup(SQLModel, table=True):
    """
    Maps a (case folded) public code to the group that claimed it. The
    address is derived from the code alone, so each code can be claimed
    once.
    """

    __tablename__ = "group_code_lookup"

    address: str = Field(primary_key=True)
    proof: str

    public_code: str
    group_id: str

    def to_core(self) -> CodeLookupData:
        return CodeLookupData(
            public_code=self.public_code, group_id=bytes.fromhex(self.group_id)
        )
