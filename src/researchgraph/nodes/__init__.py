"""Built-in node types for research graphs."""

from researchgraph.nodes.claude import ClaudeNode, StructuredOutputError, parse_json_response

__all__ = [
    "ClaudeNode",
    "StructuredOutputError",
    "parse_json_response",
]
