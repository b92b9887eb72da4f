"""
Keeps the verifier contract's root in step with the local accumulator.

The contract accepts any root inside its recent-root window; reconcile()
pushes the latest off-chain root when the last on-chain root differs, and
is a no-op otherwise, so retrying it is always safe.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from chain.verifier import VerifierContract
from errors import (ChainClientError, ChainRevertError, ChainSyncError,
                    ConfirmationTimeoutError)
from utils.utils import PerformanceMonitor
from zk.merkle import Accumulator

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    current_root: Optional[int]
    updated_root: int
    updated: bool
    tx_hash: Optional[str] = None

    def to_dict(self):
        return {
            'currentRoot': str(self.current_root) if self.current_root is not None else None,
            'updatedRoot': str(self.updated_root),
            'updated': self.updated,
            'txHash': self.tx_hash,
        }


class RootSynchronizer:
    """Reconciles off-chain and on-chain accumulator roots"""

    def __init__(self, verifier: VerifierContract, accumulator: Accumulator,
                 confirmation_timeout: float = 180.0,
                 monitor: Optional[PerformanceMonitor] = None):
        self.verifier = verifier
        self.accumulator = accumulator
        self.confirmation_timeout = confirmation_timeout
        self.monitor = monitor or PerformanceMonitor()
        self._lock = asyncio.Lock()

    async def current_on_chain_root(self) -> Optional[int]:
        try:
            return await self.verifier.get_last_root()
        except (ChainRevertError, ChainClientError) as e:
            raise ChainSyncError(f"Could not read on-chain root: {e}") from e

    def current_off_chain_root(self) -> int:
        return self.accumulator.root

    async def reconcile(self) -> SyncResult:
        async with self._lock:
            on_chain = await self.current_on_chain_root()
            off_chain = self.current_off_chain_root()

            if on_chain == off_chain:
                logger.debug(f"Roots in sync: {str(off_chain)[:15]}...")
                return SyncResult(current_root=on_chain, updated_root=off_chain, updated=False)

            logger.info(
                f"Pushing root {str(off_chain)[:15]}... "
                f"(on-chain: {str(on_chain)[:15] if on_chain is not None else 'none'})")

            with self.monitor.start_operation("root_sync", leaves=self.accumulator.size):
                tx_hash = None
                try:
                    tx_hash = await self.verifier.update_root(off_chain)
                    receipt = await self.verifier.confirm(tx_hash, self.confirmation_timeout)
                except ChainRevertError as e:
                    logger.error(f"Root update rejected: {e.reason}")
                    raise ChainSyncError(f"Root update reverted: {e.reason}", tx_hash) from e
                except ConfirmationTimeoutError as e:
                    logger.error(f"Root update {e.tx_hash} not confirmed in time")
                    raise ChainSyncError(str(e), e.tx_hash) from e
                except ChainClientError as e:
                    logger.error(f"Root update failed: {e}")
                    raise ChainSyncError(str(e), tx_hash) from e

                if not receipt.succeeded:
                    reason = receipt.revert_reason or 'execution reverted'
                    logger.error(f"Root update {tx_hash} reverted: {reason}")
                    raise ChainSyncError(f"Root update reverted: {reason}", tx_hash)

            logger.info(f"Root update confirmed in block {receipt.block_number}")
            return SyncResult(current_root=on_chain, updated_root=off_chain,
                              updated=True, tx_hash=tx_hash)

    async def is_root_known(self, root: int) -> bool:
        try:
            return await self.verifier.is_known_root(root)
        except (ChainRevertError, ChainClientError) as e:
            raise ChainSyncError(f"Could not query root window: {e}") from e
