# Scheduling
from .context_sweeper import ContextSweeper

__all__ = ["ContextSweeper"]
