"""
Data access components.

Persistence collaborator for formed groups, membership and encrypted messages.
"""

from circle_gateway.components.data.group_store import (
    GroupStore,
    SqlGroupStore,
    NullGroupStore,
    AsyncGroupStore,
    create_group_store,
)

__all__ = [
    "GroupStore",
    "SqlGroupStore",
    "NullGroupStore",
    "AsyncGroupStore",
    "create_group_store",
]
