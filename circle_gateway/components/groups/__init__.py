"""
Group membership component.
"""

from circle_gateway.components.groups.registry import GroupRegistry

__all__ = ["GroupRegistry"]
