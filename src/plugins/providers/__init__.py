"""
Provider plugins package.

Provider plugins own one resource kind each. Built-in providers drive the
gcloud CLI; third-party providers are discovered via Python entry points
(group: 'deployctl.providers').
"""

from plugins.providers.base import ResourceProvider

__all__ = ["ResourceProvider"]
