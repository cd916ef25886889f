"""Demo MCP providers used for local runs and tests (see tool_broker.demo.server)."""
