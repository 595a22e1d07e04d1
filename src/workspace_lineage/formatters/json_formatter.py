"""JSON output formatter."""

import json
from typing import Optional

from ..core.engine import QueryResponse


class JSONFormatter:
    """Formats query responses as JSON."""

    def __init__(self, indent: Optional[int] = 2):
        """
        Initialize JSON formatter.

        Args:
            indent: JSON indentation level (None for compact output)
        """
        self.indent = indent

    def format(self, response: QueryResponse) -> str:
        """
        Format a query response as a JSON string.

        Args:
            response: QueryResponse to format

        Returns:
            JSON string of the response payload
        """
        return json.dumps(response.to_dict(), indent=self.indent, ensure_ascii=False)

    def format_to_file(self, response: QueryResponse, file_path: str) -> None:
        """
        Format a query response and write it to a file.

        Args:
            response: QueryResponse to format
            file_path: Output file path
        """
        json_str = self.format(response)
        with open(file_path, 'w', encoding='utf-8') as f:
            f.write(json_str)

    def format_data_only(self, response: QueryResponse) -> str:
        """Format just the data of a successful response, or the error of a failed one."""
        payload = response.data if response.ok else response.error.to_dict()
        return json.dumps(payload, indent=self.indent, ensure_ascii=False)
