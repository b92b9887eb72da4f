"""Persistence layer for the voting service."""

from .store import VotingStore, CommitmentRecord, NullifierRecord, RootRecordRow

__all__ = ['VotingStore', 'CommitmentRecord', 'NullifierRecord', 'RootRecordRow']
