"""
Bitnovo Pay MCP server.

MCP tools for Bitnovo Pay plus an in-process webhook receiver that verifies,
deduplicates and stores payment notifications.
"""
__version__ = "1.0.0"
