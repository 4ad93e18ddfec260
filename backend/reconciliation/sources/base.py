"""
Transfer source interface.

Sources are plain classes satisfying this protocol; the service never
cares which strategy produced a batch.
"""

from typing import Any, Dict, Optional, Protocol, runtime_checkable

from reconciliation.models import TransferBatch
from reconciliation.source_registry import TransferSourceType


@runtime_checkable
class TransferSource(Protocol):
    source_type: TransferSourceType

    async def fetch_incoming_transfers(
        self,
        address: str,
        since_block: Optional[int] = None
    ) -> TransferBatch:
        """
        Fetch transfers received by address.

        Raises:
            SourceUnavailable: upstream unreachable or response unusable
        """
        ...

    def describe(self) -> Dict[str, Any]:
        ...
