"""Authentication.

One credential, two entry points: the same JWT access token authorizes
HTTP requests (Authorization: Bearer) and socket.io handshakes
(auth payload). Both resolve to a user row.
"""
