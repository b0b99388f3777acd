"""MCP server bridging Perplexity chat completions over HTTP+SSE."""

APP_NAME = "perplexity-ask-mcp-server"
SERVER_NAME = "perplexity-ask-http"
APP_VERSION = "0.1.0"

__all__ = ["APP_NAME", "SERVER_NAME", "APP_VERSION"]
