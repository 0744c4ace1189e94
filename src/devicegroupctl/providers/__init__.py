"""Directory collaborators for devicegroupctl."""
from __future__ import annotations

from .auth import GRAPH_SCOPE, GraphSession
from .graph import DirectoryClient, GraphClient, TokenSource, escape_odata_literal

__all__ = [
    "GRAPH_SCOPE",
    "DirectoryClient",
    "GraphClient",
    "GraphSession",
    "TokenSource",
    "escape_odata_literal",
]
