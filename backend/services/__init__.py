"""
Services package - Business logic layer.

This package contains all business logic services that operate on Django models
but are decoupled from the HTTP/WebSocket layer.

Modules:
    - locations: Heartbeat storage and freshness-aware driver lookups
    - pricing: Fare estimation
    - negotiation: Fare negotiation state machine
    - matching: Ride request lifecycle and negotiation orchestration
    - exceptions: Domain errors shared by all of the above

Import from the submodules directly; they touch models, so nothing is
re-exported here.
"""
