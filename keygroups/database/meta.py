"""
Meta functionality for the database.
"""

from .group import CodeLookup, Group
from .invite import InviteLink
from .members import GroupMember

ALL_TABLES = (
    Group,
    CodeLookup,
    GroupMember,
    InviteLink,
)
