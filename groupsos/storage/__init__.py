"""
storage — Persistence collaborators used by the alert core.

Sub-modules:
    interfaces    — SessionStore / MembershipStore / AlertLedger protocols
    tables        — SQLAlchemy ORM tables
    repositories  — SQL implementations of the protocols
    memory        — in-process implementation for development and tests
"""
