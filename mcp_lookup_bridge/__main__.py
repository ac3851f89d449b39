"""Allow ``python -m mcp_lookup_bridge``."""

import sys

from mcp_lookup_bridge.cli import main

sys.exit(main())
