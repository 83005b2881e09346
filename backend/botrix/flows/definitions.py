# /botrix/flows/definitions.py

"""
Flow definitions as pure data (no logic).

This module defines:
- VALID_NODE_TYPES: the node kinds a flow may contain
- DEFAULT_NODES: the two-node skeleton every new bot starts with
  (a `start` welcome message and a `fallback` message)
"""

from typing import Any, Dict, List

from botrix.config import strings
from botrix.models.flow import NodeType, START_NODE_ID

VALID_NODE_TYPES = frozenset(node_type.value for node_type in NodeType)

FALLBACK_NODE_ID = "fallback"

# Stored as plain dicts so callers always get a fresh copy to build models from.
DEFAULT_NODES: List[Dict[str, Any]] = [
    {
        "id": START_NODE_ID,
        "type": NodeType.MESSAGE.value,
        "position": {"x": 100, "y": 100},
        "data": {
            "title": strings.WELCOME_TITLE,
            "content": strings.WELCOME_MESSAGE
        },
        "style": {
            "background_color": "#10b981",
            "border_color": "#059669",
            "color": "#ffffff"
        }
    },
    {
        "id": FALLBACK_NODE_ID,
        "type": NodeType.MESSAGE.value,
        "position": {"x": 100, "y": 300},
        "data": {
            "title": strings.FALLBACK_TITLE,
            "content": strings.FALLBACK_MESSAGE
        },
        "style": {
            "background_color": "#ef4444",
            "border_color": "#dc2626",
            "color": "#ffffff"
        }
    }
]
