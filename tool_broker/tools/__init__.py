from .factory import ToolFactory
from .registry import ToolDefinition, ToolExecutor, ToolRegistry

__all__ = ["ToolFactory", "ToolDefinition", "ToolExecutor", "ToolRegistry"]
