"""Protocol definitions for snapflow.

Protocols have no dependencies on the rest of the package and describe
collaborators through structural subtyping.
"""

from .providers import SourceExtractProvider

__all__ = [
    "SourceExtractProvider",
]
