"""Live game services: board rules, rooms, match flow and session bookkeeping.

Transport code (Socket.IO handlers, REST routes) calls into this package;
nothing here emits to clients directly.
"""
