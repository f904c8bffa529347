"""Maps inbound request paths to admin, binding or landing responses."""

from l2h.routing.resolver import PathResolver, Resolution, ResolutionKind

__all__ = ["PathResolver", "Resolution", "ResolutionKind"]
