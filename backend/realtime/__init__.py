"""
Realtime app for pushing delivery events over WebSockets.

Key Components:
    - notifications.py: best-effort event push to ``user_<id>`` groups
    - consumers/: WebSocket consumer that relays those events
    - middleware.py: JWT authentication for WebSocket connections
"""
