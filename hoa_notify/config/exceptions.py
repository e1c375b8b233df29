"""Errors raised while loading config.yaml and the environment."""

from typing import List, Optional


class ConfigurationError(Exception):
    """Invalid configuration, carrying every problem found in one pass.

    ``str(error)`` renders the headline, a numbered list of ``errors`` and
    the ``suggestions`` so the CLI can print it as-is before exiting.
    """

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        suggestions: Optional[List[str]] = None,
    ):
        self.message = message
        self.errors = list(errors or [])
        self.suggestions = list(suggestions or [])
        super().__init__(self.render())

    def render(self) -> str:
        lines = [self.message]
        if self.errors:
            lines.append("\nValidation Errors:")
            lines.extend(f"  {n}. {error}" for n, error in enumerate(self.errors, 1))
        if self.suggestions:
            lines.append("\nSuggestions:")
            lines.extend(f"  - {hint}" for hint in self.suggestions)
        return "\n".join(lines)
