"""Bucketsite error hierarchy.

Every failure raised by the render engine derives from ``BucketsiteError`` so
the CLI can report a single actionable line and exit non-zero.

    BucketsiteError
    ├── ConfigError
    ├── DiscoveryError
    ├── FrontMatterError
    ├── AttachmentMissingError
    ├── CacheIOError
    ├── TemplateRenderError
    └── OutputIOError
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class BucketsiteError(Exception):
    """Base class for all bucketsite errors."""


class ConfigError(BucketsiteError):
    """Settings file missing a required value or holding an invalid one."""


class DiscoveryError(BucketsiteError):
    """Post tree layout problem: zero or several main files, slug collision."""


class FrontMatterError(BucketsiteError):
    """Front matter missing, malformed, or carrying an unparsable date."""


class AttachmentMissingError(BucketsiteError):
    def __init__(self, post: Path, attachment: str) -> None:
        self.post = post
        self.attachment = attachment
        super().__init__(f"{post}: attached file not found: {attachment}")


class CacheIOError(BucketsiteError):
    """Digest store unreadable, corrupt, or failing to persist."""


class TemplateRenderError(BucketsiteError):
    def __init__(
        self,
        scope: str,
        template: str,
        message: str,
        line: Optional[int] = None,
    ) -> None:
        self.scope = scope
        self.template = template
        self.line = line
        location = f"template '{template}'"
        if line is not None:
            location += f" at line {line}"
        super().__init__(f"{scope}: {location}: {message}")


class OutputIOError(BucketsiteError):
    """Writing into the output tree failed."""
