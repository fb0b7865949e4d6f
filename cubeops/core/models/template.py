"""
Generated file model — used by every template renderer.
"""

from __future__ import annotations

from pydantic import BaseModel


class GeneratedFile(BaseModel):
    """A file rendered from a template.

    Attributes:
        path:      Absolute path, or relative to the run's working directory.
        content:   Full file content.
        overwrite: Whether to overwrite if it already exists.
        reason:    Why this file was generated.
    """

    path: str
    content: str
    overwrite: bool = True
    reason: str = ""
