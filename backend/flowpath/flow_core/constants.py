"""Constants for the flow graph core.

This module defines the shared identifiers and limits used by the graph model,
the validator and the routing engine.
"""

# Target id meaning "the flow is finished"
END = "end"

# Quota limits per membership tier
ACTIVE_MAX_FLOWS = 3
ACTIVE_MAX_NODES_PER_FLOW = 30
FREE_MAX_FLOWS = 1
FREE_MAX_NODES_PER_FLOW = 5

# A/B bucketing resolution (hash bits mapped into [0, 1))
AB_HASH_BYTES = 8
AB_HASH_SPACE = 2 ** (AB_HASH_BYTES * 8)

# Default title for nodes created without one
DEFAULT_NODE_TITLE = "Untitled step"
