"""LangGraph node implementations, one module per node.

Every node is a plain function ``node(state, ctx) -> dict`` returning a
partial state update; the orchestrator binds ``ctx`` when building the graph.
"""

from .planner import planner_node  # noqa: F401
from .researcher import researcher_node  # noqa: F401
from .coder import coder_node  # noqa: F401
from .verifier import verifier_node  # noqa: F401
from .snitch import snitch_node  # noqa: F401
from .ticket_closer import ticket_closer_node  # noqa: F401
