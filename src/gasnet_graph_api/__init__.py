import argparse
import asyncio

from . import server
from .settings import Settings
from .utils import process_config


def main():
    """Main entry point for the package."""
    parser = argparse.ArgumentParser(description="Gas Network Graph API")
    parser.add_argument("--db-url", default=None, help="Agensgraph connection URL")
    parser.add_argument("--username", default=None, help="Agensgraph username")
    parser.add_argument("--password", default=None, help="Agensgraph password")
    parser.add_argument("--database", default=None, help="Agensgraph database name")
    parser.add_argument("--graphname", default=None, help="Agensgraph graph name (default: gasnet)")
    parser.add_argument(
        "--transport", default=None, help="Transport type (rest, stdio, sse, http)"
    )
    parser.add_argument("--namespace", default=None, help="MCP tool namespace")
    parser.add_argument(
        "--server-path", default=None, help="MCP HTTP path (default: /mcp/)"
    )
    parser.add_argument("--server-host", default=None, help="Server host")
    parser.add_argument("--server-port", type=int, default=None, help="Server port")
    parser.add_argument(
        "--allow-origins",
        default=None,
        help="Allow origins for remote clients (comma-separated list)",
    )
    parser.add_argument(
        "--allowed-hosts",
        default=None,
        help="Allowed hosts for DNS rebinding protection (comma-separated list)",
    )
    parser.add_argument(
        "--read-timeout",
        type=int,
        default=None,
        help="Timeout in seconds for read queries (default: 30)",
    )
    writes = parser.add_mutually_exclusive_group()
    writes.add_argument(
        "--enable-writes",
        dest="enable_writes",
        action="store_const",
        const=True,
        default=None,
        help="Enable write endpoints (default)",
    )
    writes.add_argument(
        "--disable-writes",
        dest="enable_writes",
        action="store_const",
        const=False,
        help="Disable write endpoints",
    )
    parser.add_argument(
        "--auth-required",
        action="store_const",
        const=True,
        default=None,
        help="Reject requests without a valid x-api-key",
    )
    parser.add_argument("--api-keys", default=None, help="Accepted API keys (comma-separated list)")
    parser.add_argument("--max-hops", type=int, default=None, help="Hard bound on path length (default: 100)")
    parser.add_argument(
        "--enrich-concurrency",
        type=int,
        default=None,
        help="Concurrent lookups per enrichment pass (default: 5)",
    )
    parser.add_argument("--token-limit", type=int, default=None, help="MCP response token limit")

    args = parser.parse_args()
    config = process_config(args)
    asyncio.run(server.main(Settings(**config)))


__all__ = ["main", "server"]
