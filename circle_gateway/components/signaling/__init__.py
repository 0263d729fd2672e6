"""
Key distribution signaling component.
"""

from circle_gateway.components.signaling.router import KeySignalingRouter

__all__ = ["KeySignalingRouter"]
