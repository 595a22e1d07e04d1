"""Input validation utilities."""

import re
from typing import Optional

from ..core.models import ChangeType, NodeKind

VALID_DIRECTIONS = ("upstream", "downstream", "both")
VALID_TARGET_TYPES = ("table", "column")

_NODE_ID_PATTERN = re.compile(r"^(?P<kind>[a-z]+):(?P<name>\S.*)$", re.IGNORECASE)


def validate_node_id(node_id: str) -> Optional[str]:
    """
    Validate a stable node identifier.

    Args:
        node_id: Identifier of the form ``<kind>:<qualified-name>``

    Returns:
        Error message if invalid, None if valid
    """
    if not node_id:
        return "Node identifier cannot be empty"

    if not isinstance(node_id, str):
        return "Node identifier must be a string"

    match = _NODE_ID_PATTERN.match(node_id.strip())
    if not match:
        return f"Malformed node identifier '{node_id}': expected '<kind>:<qualified-name>'"

    kinds = {kind.value for kind in NodeKind}
    if match.group("kind").lower() not in kinds:
        return f"Unknown node kind '{match.group('kind')}'. Supported: {', '.join(sorted(kinds))}"

    return None


def validate_direction(direction: str) -> Optional[str]:
    """
    Validate a lineage traversal direction.

    Returns:
        Error message if invalid, None if valid
    """
    if not isinstance(direction, str) or direction.lower() not in VALID_DIRECTIONS:
        return f"Unsupported direction '{direction}'. Supported: {', '.join(VALID_DIRECTIONS)}"
    return None


def validate_depth(depth) -> Optional[str]:
    """Depth must be an integer or None; negative values mean unlimited."""
    if depth is None:
        return None
    if isinstance(depth, bool) or not isinstance(depth, int):
        return f"Depth must be an integer, got {type(depth).__name__}"
    return None


def validate_change_type(change_type: str) -> Optional[str]:
    """
    Validate an impact analysis change type.

    Returns:
        Error message if invalid, None if valid
    """
    valid = [c.value for c in ChangeType]
    if isinstance(change_type, ChangeType):
        return None
    if not isinstance(change_type, str) or change_type.lower() not in valid:
        return f"Unsupported change type '{change_type}'. Supported: {', '.join(valid)}"
    return None


def validate_target_type(target_type: str) -> Optional[str]:
    if not isinstance(target_type, str) or target_type.lower() not in VALID_TARGET_TYPES:
        return f"Unsupported impact target type '{target_type}'. Supported: {', '.join(VALID_TARGET_TYPES)}"
    return None


def validate_name(name: str, what: str = "Name") -> Optional[str]:
    """
    Validate a table or column name supplied by the host.

    Returns:
        Error message if invalid, None if valid
    """
    if name is None:
        return f"{what} is required"

    if not isinstance(name, str):
        return f"{what} must be a string"

    if len(name.strip()) == 0:
        return f"{what} cannot be empty or whitespace only"

    if len(name) > 1024:
        return f"{what} is too long (max 1024 characters)"

    return None
