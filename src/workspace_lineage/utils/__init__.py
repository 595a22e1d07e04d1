"""Utility functions."""

from .validation import validate_node_id, validate_direction, validate_change_type, validate_name

__all__ = ["validate_node_id", "validate_direction", "validate_change_type", "validate_name"]
