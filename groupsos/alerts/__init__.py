"""
alerts — Group emergency alerting.

Sub-modules:
    channels/       — Per-channel delivery backends (live WebSocket, web push)
    alert_service   — Emergency / answer / archive orchestration
    fanout          — Per-member delivery decision and group broadcast
    models          — Data structures shared across the system
"""
