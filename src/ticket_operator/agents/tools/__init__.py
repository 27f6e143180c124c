from .definitions import (
    DetectedTool,
    ToolDefinition,
    ToolRegistry,
    detect_tools,
    load_builtin_tools,
)

__all__ = [
    "DetectedTool",
    "ToolDefinition",
    "ToolRegistry",
    "detect_tools",
    "load_builtin_tools",
]
