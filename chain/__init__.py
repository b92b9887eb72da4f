"""On-chain verifier access and root synchronisation."""

from .client import ChainClient, Web3ChainClient, TxReceipt
from .verifier import VerifierContract, normalize_root
from .sync import RootSynchronizer, SyncResult

__all__ = ['ChainClient', 'Web3ChainClient', 'TxReceipt', 'VerifierContract',
           'normalize_root', 'RootSynchronizer', 'SyncResult']
