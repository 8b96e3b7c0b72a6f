"""CLI interface for agentctx."""
