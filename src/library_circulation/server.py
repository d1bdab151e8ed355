"""Library Circulation MCP Server - FastMCP Implementation

Exposes the circulation ledger of a small library over MCP.

Features exposed:
- Resources: catalog items, ledger entries, overdue list, borrower loans,
  integrity report, statistics
- Tools: borrow, reserve and return, plus catalog maintenance
"""

import logging
import signal
import sys
from typing import Any

from fastmcp import FastMCP

from library_circulation.config import get_config
from library_circulation.database.session import get_db_manager
from library_circulation.observability import initialize_observability
from library_circulation.resources import all_resources
from library_circulation.tools import all_tools

# stderr for logs, stdout for the MCP protocol
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)

logger = logging.getLogger(__name__)

config = get_config()

mcp = FastMCP(
    name=config.server_name,
    version=config.server_version,
    instructions=(
        "Library Circulation Server - tracks which copies are available, who holds "
        "them, when they are due and when they come back. Each item can be held by "
        "one loan or reservation at a time. Use resources to browse items and the "
        "ledger, and tools to borrow, reserve, return and maintain the catalog. "
        "Keep the entry ID returned by borrow_item/reserve_item; return_item needs it."
    ),
)

for resource in all_resources:
    uri = resource.get("uri_template", resource.get("uri"))
    if not uri:
        logger.error("Resource missing URI: %s", resource)
        continue

    logger.debug("Registering resource: %s with URI: %s", resource["name"], uri)
    try:
        mcp.resource(
            uri=uri,
            name=resource["name"],
            description=resource["description"],
            mime_type=resource["mime_type"],
        )(resource["handler"])
    except Exception:
        logger.exception("Failed to register resource %s", resource["name"])
        raise

logger.info("Registered %d resources", len(all_resources))

for tool in all_tools:
    logger.debug("Registering tool: %s", tool["name"])
    try:
        mcp.tool(
            name=tool["name"],
            description=tool["description"],
        )(tool["handler"])
    except Exception:
        logger.exception("Failed to register tool %s", tool["name"])
        raise

logger.info("Registered %d tools", len(all_tools))


def prepare_storage() -> None:
    """Create the schema if needed and check the database is reachable."""
    db_manager = get_db_manager()
    if db_manager.is_memory_database:
        raise RuntimeError("In-memory SQLite is single-session only; configure a database file")
    db_manager.init_database()
    if not db_manager.verify_connection():
        raise RuntimeError(f"Database unavailable: {db_manager.database_url}")


def shutdown() -> None:
    """Dispose of pooled connections."""
    logger.info("MCP Server shutting down gracefully...")
    get_db_manager().close()
    logger.info("Shutdown complete")


def run_server() -> None:
    """Run the MCP server on the configured transport.

    stdio: stdin receives JSON-RPC requests, stdout sends responses.
    streamable_http: served on ``http_host:http_port``.
    """
    logger.info(
        "Starting %s v%s on %s transport",
        config.server_name,
        config.server_version,
        config.transport,
    )

    if config.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug mode enabled - verbose protocol logging active")
    else:
        logging.getLogger().setLevel(config.log_level)
        logging.getLogger("fastmcp").setLevel(logging.WARNING)

    def signal_handler(signum: int, _frame: Any) -> None:
        logger.info("Received signal %s, initiating shutdown...", signum)
        shutdown()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        logger.info("MCP Server ready and waiting for connections...")
        if config.transport == "stdio":
            mcp.run(transport="stdio")
        else:
            mcp.run(transport="streamable-http", host=config.http_host, port=config.http_port)
    except Exception:
        logger.exception("Fatal error in MCP server")
        sys.exit(1)


def main() -> None:
    """Entry point for ``library-circulation`` and ``python -m library_circulation.server``."""
    try:
        logger.info("=" * 60)
        logger.info("Library Circulation MCP Server")
        logger.info("Version: %s", config.server_version)
        logger.info("Transport: %s", config.transport)
        logger.info("Database: %s", config.database_path)
        logger.info("Debug Mode: %s", config.debug)
        logger.info("=" * 60)

        initialize_observability(config)
        prepare_storage()
        run_server()

    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception:
        logger.exception("Failed to start MCP server")
        sys.exit(1)


if __name__ == "__main__":
    main()
