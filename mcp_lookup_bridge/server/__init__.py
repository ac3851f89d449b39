"""MCP serving layer: tool surface, built-in tools and transports."""
