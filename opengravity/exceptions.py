"""Custom exceptions for Opengravity."""


class OpengravityError(Exception):
    """Base exception for Opengravity."""

    pass


class ConfigurationError(OpengravityError):
    """Missing credentials or unusable provider settings."""

    pass


class TransportError(OpengravityError):
    """Provider or network failure while streaming a completion."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProtocolViolation(OpengravityError):
    """Malformed stream fragment or tool name produced by the model."""

    pass


class PersistenceError(OpengravityError):
    """Session file could not be read or written."""

    def __init__(self, path: str, message: str):
        super().__init__(f"Session storage failed for {path}: {message}")
        self.path = path


class ToolError(OpengravityError):
    """Tool execution errors."""

    pass


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class ToolArgumentError(ToolError):
    """Tool arguments do not match the declared schema."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Invalid arguments for '{tool_name}': {message}")
        self.tool_name = tool_name


class AgentBusyError(OpengravityError):
    """A turn is already in flight for this conversation."""

    pass
