"""
Encrypted message relay component.
"""

from circle_gateway.components.relay.message_relay import MessageRelay, RelayResult, build_relay_payload

__all__ = ["MessageRelay", "RelayResult", "build_relay_payload"]
