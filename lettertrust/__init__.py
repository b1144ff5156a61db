"""lettertrust - certificate trust and signed letters for content-addressed repositories.

Decides whether a signing certificate is currently trusted (local blacklist,
remote signed whitelist) and signs/verifies repository-bound letters.
"""

__version__ = "0.1.0"
__author__ = "lettertrust Contributors"

from lettertrust.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
