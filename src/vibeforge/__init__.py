"""
Vibeforge - plan, build and review features inside remote sandboxes.

A non-technical user describes a feature; an AI agent plans it, builds it
inside a disposable sandbox and streams progress back for approval.
"""

__version__ = "0.4.0"

from vibeforge.core.config.models import VibeforgeConfig
from vibeforge.core.store.models import SessionStatus

__all__ = ["SessionStatus", "VibeforgeConfig", "__version__"]
