"""Library Circulation MCP Resources Package

Read-only endpoints over the catalog and the circulation ledger. State
changes go through the tools in ``library_circulation.tools``.

Each resource is a dictionary with ``uri`` (static) or ``uri_template``
(parameterized), ``name``, ``description``, ``mime_type`` and an async
``handler``.
"""

from .circulation import circulation_resources
from .entries import entry_resources
from .items import item_resources

all_resources = item_resources + entry_resources + circulation_resources

__all__ = [
    "all_resources",
    "circulation_resources",
    "entry_resources",
    "item_resources",
]
