"""Testing utilities for batch_agent."""

from .mocks import MockAgent, UnavailableAgent

__all__ = ["MockAgent", "UnavailableAgent"]
