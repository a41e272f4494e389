"""
Engine exceptions.

Tool handlers raise these; the dispatcher turns them into failed ToolResults so a
single bad call never unwinds the cycle that issued it.
"""
from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine errors."""


class ToolValidationError(EngineError):
    """A tool call is missing a required parameter or carries an invalid one."""


class EntityNotFoundError(EngineError):
    """A tool call references a post, user, community or conversation that does not exist."""


class ModelCallError(EngineError):
    """The language model timed out or returned something unusable."""


class RegistryError(EngineError):
    """Startup verification of the tool registry failed."""


class InsufficientResourcesError(EngineError):
    """The actor lacks the energy, gold or items an action needs."""
