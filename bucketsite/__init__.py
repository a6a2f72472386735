"""Incremental static site renderer."""

from .context import BuildMode, RenderPlan, RenderStats
from .engine import render_site

__all__ = ["BuildMode", "RenderPlan", "RenderStats", "render_site"]
__version__ = "0.1.0"
