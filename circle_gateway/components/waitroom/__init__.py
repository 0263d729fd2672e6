"""
Waitroom component.

Quorum-based group formation.
"""

from circle_gateway.components.waitroom.manager import (
    WaitroomManager,
    WaitingEntry,
    FormedGroup,
    generate_group_id,
    generate_group_name,
)

__all__ = [
    "WaitroomManager",
    "WaitingEntry",
    "FormedGroup",
    "generate_group_id",
    "generate_group_name",
]
