"""Back node client for registering bindings on a front node."""

from l2h.client.registrar import FrontNodeClient

__all__ = ["FrontNodeClient"]
