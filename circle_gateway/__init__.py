"""
Circle Gateway.

WebSocket service for anonymous support circles: waitroom, encrypted
group relay and key signaling.
"""
