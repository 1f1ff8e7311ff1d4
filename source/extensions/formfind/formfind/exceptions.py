"""
Exception hierarchy for formfind.

Every error carries an optional ``context`` dict and a list of
``suggestions`` that are folded into the message, so a failed
registration reads like::

    Goal declares 2 nodes but supplies 3 starting positions

    Context:
      goal: LengthGoal
      node_count: 2
      starting_positions: 3

    Suggestions:
      - Pass exactly one starting position per node
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class FormFindError(Exception):
    """
    Base exception for all formfind errors.

    Attributes:
        message: The bare error message.
        context: Contextual key/value pairs (goal type, counts, ...).
        suggestions: Actionable hints for fixing the call.
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ):
        self.message = message
        self.context = context or {}
        self.suggestions = suggestions or []
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]

        if self.context:
            parts.append("\n\nContext:")
            for key, value in self.context.items():
                parts.append(f"\n  {key}: {value}")

        if self.suggestions:
            parts.append("\n\nSuggestions:")
            for suggestion in self.suggestions:
                parts.append(f"\n  - {suggestion}")

        return "".join(parts)

    def __str__(self) -> str:
        return self._format_message()


class ArityMismatchError(FormFindError, ValueError):
    """
    A goal or binder was registered with a starting-position count that
    does not match its node count.

    Raised before any node is created, so the solver is left untouched.
    """


class DegenerateGeometryError(FormFindError, ValueError):
    """
    A zero-length vector was normalised (drag ray, line direction, plane
    normal, camera basis, ...).
    """


class ConfigError(FormFindError):
    """Invalid or unknown solver settings."""
