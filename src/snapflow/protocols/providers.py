"""Provider protocol definitions.

Protocols here describe the collaborators the snapshot engine consumes
without owning, so any object with the right shape can be injected.
"""

from typing import Any, Iterable, Mapping, Protocol, runtime_checkable


@runtime_checkable
class SourceExtractProvider(Protocol):
    """Protocol for sources of a full extract.

    The engine never reads incrementally: every call must yield the
    complete current state of the source relation, taken consistently,
    one mapping of column name to value per row.
    """

    def extract(self) -> Iterable[Mapping[str, Any]]:
        """Return every row of the source relation.

        Raises:
            ConnectivityError: If the source cannot be reached
        """
        ...
