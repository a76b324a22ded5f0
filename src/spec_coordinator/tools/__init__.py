"""AI tool definitions, detection, role assignment and process execution."""

from spec_coordinator.tools.definitions import (
    KNOWN_TOOLS,
    TOOL_DEFINITIONS,
    ToolDefinition,
    ToolRole,
    get_tool_definition,
)
from spec_coordinator.tools.detection import DetectedTool, detect_available_tools
from spec_coordinator.tools.roles import (
    RoleAssignment,
    assign_roles,
    next_lead_candidate,
    normalize_resumed_roles,
    reassign_lead,
)
from spec_coordinator.tools.runner import (
    CliToolRunner,
    InvocationRequest,
    InvocationResult,
    LaunchMode,
    ProcessRunner,
    ToolRunner,
    build_command,
    ensure_sandbox_available,
    resolve_launch_mode,
)

__all__ = [
    "CliToolRunner",
    "DetectedTool",
    "InvocationRequest",
    "InvocationResult",
    "KNOWN_TOOLS",
    "LaunchMode",
    "ProcessRunner",
    "RoleAssignment",
    "TOOL_DEFINITIONS",
    "ToolDefinition",
    "ToolRole",
    "ToolRunner",
    "assign_roles",
    "build_command",
    "detect_available_tools",
    "ensure_sandbox_available",
    "get_tool_definition",
    "next_lead_candidate",
    "normalize_resumed_roles",
    "reassign_lead",
    "resolve_launch_mode",
]
