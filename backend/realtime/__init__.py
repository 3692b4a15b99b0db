"""
Realtime app for WebSocket notifications.

This app provides:
- The notification sink used by the ride services (persist + push)
- The Notification model backing the notification inbox
- A WebSocket consumer that streams notifications to the logged in user
- JWT/Cookie authentication middleware for WebSocket connections

Key Components:
    - notifications.py: notify() entry point
    - consumers/: NotificationConsumer and its base class
    - middleware.py: JWT query-string / cookie auth for WebSockets

Usage:
    from realtime.notifications import notify
    from realtime.consumers import NotificationConsumer
"""
