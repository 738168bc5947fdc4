"""
channels — Per-channel delivery backends.

    live      — write an event to a registered WebSocket, bounded in time
    web_push  — Web Push (RFC 8030) dispatch with VAPID via pywebpush

Channels report what happened; the choice between them lives in
fanout.deliver_to_member.
"""
