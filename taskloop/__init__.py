"""Task Loop MCP Server - Core functionality package."""

# No imports at package level to avoid circular import issues
# Import modules directly where needed

__all__ = [
    "LoopManager",
    "LoopState",
    "LoopTask",
    "DetectionResult",
    "StateStore",
    "Workspace",
]
