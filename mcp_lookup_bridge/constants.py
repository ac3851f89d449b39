"""Shared constants for MCP Lookup Bridge."""

SERVER_NAME = "mcp-lookup-bridge"
SERVER_VERSION = "0.1.0"

# Network defaults
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9100
HTTP_ENDPOINT = "/mcp"

# Logging defaults
LOG_DIR = "logs"
DEFAULT_LOG_LEVEL = "INFO"

# Directory (mcplookup.org) API
DIRECTORY_BASE_URL = "https://mcplookup.org/api/v1"
DIRECTORY_TIMEOUT = 10.0

# Downstream connection timeouts
MCP_INIT_TIMEOUT = 15  # seconds for MCP session initialization
MANAGED_START_TIMEOUT = 180.0  # seconds for a managed server to install and initialize
CONNECT_TIMEOUT = 15.0  # seconds to open a remote connection (per transport)
CALL_TIMEOUT = 30.0  # seconds for a single downstream tool call
TOOL_LIST_TIMEOUT = 10.0  # seconds for tools/list after a managed start

# Remote transports, in the order they are attempted
TRANSPORT_STREAMABLE_HTTP = "streamable-http"
TRANSPORT_SSE = "sse"
REMOTE_TRANSPORT_ORDER = (TRANSPORT_STREAMABLE_HTTP, TRANSPORT_SSE)

# Container runtime defaults
CONTAINER_RUNTIME = "docker"
KNOWN_RUNTIMES = frozenset({"docker", "podman"})
NODE_IMAGE = "node:18-alpine"
PYTHON_IMAGE = "python:3.12-slim"
CONTAINER_MEMORY = "512m"
CONTAINER_CPUS = "0.5"
CONTAINER_PIDS_LIMIT = 100
CONTAINER_PORT = 3000
RUNTIME_COMMAND_TIMEOUT = 30.0  # seconds for docker ps/stop/rm/logs
CONTAINER_NAME_PREFIX = "mcp-"
DIRECT_CONTAINER_NAME_PREFIX = "mcp-direct-"

# Proxy tool naming: <server>_<tool>
TOOL_NAME_SEPARATOR = "_"
