#!/usr/bin/env python3
"""
MCP server for rendergit-site - renders a local repository into a static site on request
"""

import asyncio
import logging
from typing import Any, Dict, List

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .errors import RendergitError
from .site import SiteConfig, generate

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize the MCP server
server = Server("rendergit-site-mcp")


@server.list_tools()
async def list_tools() -> List[Tool]:
    """List available tools."""
    return [
        Tool(
            name="render_site",
            description="Render a local git repository into a static HTML site (log, commits, files)",
            inputSchema={
                "type": "object",
                "properties": {
                    "repo_path": {
                        "type": "string",
                        "description": "Path to the repository on this machine"
                    },
                    "output_dir": {
                        "type": "string",
                        "description": "Directory to write the HTML files into"
                    },
                },
                "required": ["repo_path", "output_dir"]
            }
        )
    ]


def render_site(repo_path: str, output_dir: str) -> str:
    result = generate(repo_path, output_dir, SiteConfig())
    return (
        f"Rendered {repo_path} (HEAD {result.head[:12]}): {result.commits} commits, "
        f"{result.pages} pages written to {result.output_dir}. Start at {result.output_dir / 'log.html'}"
    )


@server.call_tool()
async def call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
    """Call a specific tool by name."""
    if name != "render_site":
        raise ValueError(f"Unknown tool: {name}")
    for key in ("repo_path", "output_dir"):
        if key not in arguments:
            raise ValueError(f"Missing required argument: {key}")

    logger.info(f"Rendering {arguments['repo_path']} into {arguments['output_dir']}")
    try:
        # blocking filesystem work; keep the event loop free
        text = await asyncio.to_thread(render_site, arguments["repo_path"], arguments["output_dir"])
    except RendergitError as e:
        logger.error(f"Error rendering repository: {e}")
        raise
    return [TextContent(type="text", text=text)]


async def serve() -> None:
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def main() -> None:
    """Main entry point for the MCP server."""
    asyncio.run(serve())


if __name__ == "__main__":
    main()
