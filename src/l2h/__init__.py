"""l2h - expose private ports through a public front node.

A front node maps URL paths to bindings registered by back nodes, gates them
with optional per-path passwords, and brokers the offer/answer handshake that
sets up the tunnel to the back node's local port.
"""

__version__ = "0.1.0"
