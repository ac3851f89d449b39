"""Logging setup for MCP Lookup Bridge."""
