"""
Errors
======
Exception hierarchy for the widget agent.

Only :class:`WorkFolderError` is expected to escape the build loop.
Everything else is caught at the seam where it happens and turned into
diagnostic text or a "not applied" fix result.
"""


class WidgetAgentError(Exception):
    """Base class for all widget agent errors."""
    pass


class WidgetConfigError(WidgetAgentError):
    """Raised when a widget configuration cannot be constructed."""
    pass


class WorkFolderError(WidgetAgentError):
    """Raised when the build work folder cannot be created."""
    pass


class GenerationError(WidgetAgentError):
    """Raised by the scaffolder when widget files cannot be written."""
    pass


class FixApplicationError(WidgetAgentError):
    """Raised inside a fix strategy when a fix cannot be applied."""
    pass
