"""Issue one JSON-RPC call against a stdio server.

Usage:
    python -m stdio_rpc [--method METHOD] [--params JSON] [--timeout SECONDS] -- COMMAND [ARGS...]

Examples:
    # List tools exposed by an MCP server
    python -m stdio_rpc -- node cli.js --headless

    # Call a tool
    python -m stdio_rpc --method tools/call \\
        --params '{"name": "browser_snapshot", "arguments": {}}' -- node cli.js
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, List, Optional

from stdio_rpc.ipc.protocol import RpcError
from stdio_rpc.session import Session
from stdio_rpc.settings import get_settings
from stdio_rpc.utils.logging import bind_logger_context, configure_logging, create_logger


def positive_float(value: str) -> float:
    seconds = float(value)
    if seconds <= 0:
        raise argparse.ArgumentTypeError(f"must be greater than 0, got {value}")
    return seconds


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m stdio_rpc",
        description="Send one JSON-RPC call to a server spoken to over stdio",
    )
    parser.add_argument(
        "--method",
        default="tools/list",
        help="Method to call after the handshake (default: tools/list)",
    )
    parser.add_argument(
        "--params",
        type=json.loads,
        default={},
        help="Params as a JSON object (default: {})",
    )
    parser.add_argument(
        "--timeout",
        type=positive_float,
        default=None,
        help="Per-call timeout in seconds (default: STDIO_RPC_DEFAULT_TIMEOUT or 30)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level for stderr output (default: STDIO_RPC_LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Server command line, after --",
    )
    return parser


async def run(command: List[str], method: str, params: Any, timeout: Optional[float]) -> Any:
    with bind_logger_context(server_command=command[0]):
        async with Session.connect(command[0], *command[1:], timeout=timeout) as session:
            return await session.call(method, params, timeout=timeout)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.error("a server command is required after --")
    if not isinstance(args.params, dict):
        parser.error("--params must be a JSON object")

    settings = get_settings()
    configure_logging(args.log_level or settings.log_level, json_output=settings.log_json)
    settings.log_config(create_logger("cli"))

    try:
        result = asyncio.run(run(command, args.method, args.params, args.timeout))
    except RpcError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"error: cannot start {command[0]}: {e}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
