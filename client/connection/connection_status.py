"""
Channel lifecycle status.

Tracked by ConnectionManager only, separately from the session state
machine. IDLE can occur with any ConnectionState.
"""
from enum import Enum

class ConnectionState(Enum):
    """
    Duplex channel lifecycle.

    Transitions:
        DISCONNECTED -> CONNECTING   connect() called
        CONNECTING   -> CONNECTED    handshake succeeded
        CONNECTING   -> DISCONNECTED handshake failed (reconnect armed)
        CONNECTED    -> DISCONNECTED closed (reconnect armed unless explicit)
    """
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
