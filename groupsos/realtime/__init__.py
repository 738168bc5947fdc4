"""
realtime — Live WebSocket delivery.

Sub-modules:
    registry    — user id → the one live connection currently bound to it
    connection  — WebSocket wrapper used as the registry handle
    messages    — JSON envelope: auth / auth_success / alert / alert-answered
    protocol    — authentication handshake and per-connection serve loop
"""
