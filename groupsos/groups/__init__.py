"""
groups — Users, sessions and group membership.

Modules:
    service   — session bootstrap, group create / join, rosters
"""
