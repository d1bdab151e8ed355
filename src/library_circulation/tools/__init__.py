"""
MCP tools for the Library Circulation server.

Tools are the only way to change state: circulation transitions (borrow,
reserve, return) and catalog maintenance. Read-only access lives in
``resources``.

Each tool is a dictionary with ``name``, ``description``, ``inputSchema``
and an async ``handler`` taking the raw argument dict.
"""

from .catalog import add_catalog_item, remove_catalog_item, update_catalog_item
from .circulation import borrow_item, reserve_item, return_item

all_tools = [
    borrow_item,
    reserve_item,
    return_item,
    add_catalog_item,
    update_catalog_item,
    remove_catalog_item,
]

__all__ = [
    "add_catalog_item",
    "all_tools",
    "borrow_item",
    "remove_catalog_item",
    "reserve_item",
    "return_item",
    "update_catalog_item",
]
