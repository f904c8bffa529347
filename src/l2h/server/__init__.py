"""HTTP surface for front and back nodes."""

from l2h.server.admin import AdminConsole
from l2h.server.node import RESOLUTION_HEADER, NodeServer, run_node

__all__ = ["AdminConsole", "NodeServer", "RESOLUTION_HEADER", "run_node"]
