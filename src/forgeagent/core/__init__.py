"""
Execution core: orchestrator lifecycle, budget gating and file-conflict detection.

Import concrete classes from their modules (`forgeagent.core.orchestrator`,
`forgeagent.core.budget`, ...); this package only re-exports the error base.
"""

from .errors import ForgeError

__all__ = ["ForgeError"]
