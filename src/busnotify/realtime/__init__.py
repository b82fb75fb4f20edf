"""Real-time layer — socket.io connections, route presence, broadcast.

Events flow one way per concern:
1. Handshake → ConnectionAuthenticator → EventRouter session (+ auto-join)
2. Inbound command → EventRouter handler → store → BroadcastEngine
3. BroadcastEngine → every connection in the route's channel, and the
   in-process EventBus (optionally mirrored to Redis)

All mutable realtime state lives on one RealtimeHub built per app.
"""
