"""
Persistence for registrations, accumulator roots and nullifier records.

Commitments are stored without their nullifier hash so a registration can
never be linked to the vote it later casts. Nullifier records are keyed by
the nullifier hash; the primary key is the final double-vote guard. An
unused record carries a broadcast vote transaction whose confirmation is
still outstanding.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import (Boolean, DateTime, Integer, String, create_engine, delete,
                        or_, select, update)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from config.config import StoreConfig

logger = logging.getLogger(__name__)

# decimal string of a BN254 field element
FIELD_STRING_LENGTH = 78


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class CommitmentRecord(Base):
    __tablename__ = 'commitments'

    commitment: Mapped[str] = mapped_column(String(FIELD_STRING_LENGTH), primary_key=True)
    leaf_index: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self):
        return f'<CommitmentRecord {self.leaf_index}: {self.commitment[:12]}...>'


class NullifierRecord(Base):
    __tablename__ = 'nullifiers'

    nullifier_hash: Mapped[str] = mapped_column(String(FIELD_STRING_LENGTH), primary_key=True)
    used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self):
        return f'<NullifierRecord {self.nullifier_hash[:12]}... used={self.used}>'


class RootRecordRow(Base):
    __tablename__ = 'roots'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    root: Mapped[str] = mapped_column(String(FIELD_STRING_LENGTH), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self):
        return f'<RootRecord {self.id}: {self.root[:12]}...>'


class VotingStore:
    """SQLAlchemy-backed store for commitments, roots and nullifiers"""

    def __init__(self, config: Optional[StoreConfig] = None):
        self.config = config or StoreConfig()
        url = self.config.database_url

        engine_args = {'echo': self.config.echo_sql}
        if url.startswith('sqlite'):
            engine_args['connect_args'] = {'check_same_thread': False}
            if url in ('sqlite://', 'sqlite:///:memory:'):
                engine_args['poolclass'] = StaticPool

        self.engine = create_engine(url, **engine_args)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)
        logger.debug(f"Voting store ready at {self.engine.url.render_as_string(hide_password=True)}")

    # ---- commitments -------------------------------------------------

    def save_commitment(self, commitment: int, leaf_index: int) -> None:
        with self.Session.begin() as session:
            session.add(CommitmentRecord(commitment=str(commitment), leaf_index=leaf_index))

    def all_commitments(self) -> List[int]:
        """Commitments in leaf order"""
        with self.Session() as session:
            rows = session.scalars(
                select(CommitmentRecord.commitment).order_by(CommitmentRecord.leaf_index))
            return [int(c) for c in rows]

    def commitment_exists(self, commitment: int) -> bool:
        with self.Session() as session:
            return session.get(CommitmentRecord, str(commitment)) is not None

    # ---- roots -------------------------------------------------------

    def save_root(self, root: int, created_at: Optional[datetime] = None) -> None:
        with self.Session.begin() as session:
            session.add(RootRecordRow(root=str(root), created_at=created_at or _utcnow()))

    def latest_root(self) -> Optional[int]:
        with self.Session() as session:
            row = session.scalars(
                select(RootRecordRow).order_by(RootRecordRow.id.desc()).limit(1)).first()
            return int(row.root) if row else None

    def root_history(self) -> List[Tuple[int, datetime]]:
        with self.Session() as session:
            rows = session.scalars(select(RootRecordRow).order_by(RootRecordRow.id))
            return [(int(r.root), r.created_at) for r in rows]

    # ---- nullifiers --------------------------------------------------

    def nullifier_used(self, nullifier_hash: int) -> bool:
        with self.Session() as session:
            record = session.get(NullifierRecord, str(nullifier_hash))
            return bool(record and record.used)

    def submission_tx(self, nullifier_hash: int) -> Optional[str]:
        """Transaction last submitted (or confirmed) for this nullifier hash"""
        with self.Session() as session:
            record = session.get(NullifierRecord, str(nullifier_hash))
            return record.tx_hash if record else None

    def pending_submission(self, nullifier_hash: int) -> Optional[str]:
        with self.Session() as session:
            record = session.get(NullifierRecord, str(nullifier_hash))
            if record is None or record.used:
                return None
            return record.tx_hash

    def record_submission(self, nullifier_hash: int, tx_hash: str) -> None:
        """Remember a broadcast vote so its confirmation can be resumed"""
        key = str(nullifier_hash)

        with self.Session.begin() as session:
            result = session.execute(
                update(NullifierRecord)
                .where(NullifierRecord.nullifier_hash == key, NullifierRecord.used.is_(False))
                .values(tx_hash=tx_hash)
            )
            if result.rowcount == 1:
                return

        try:
            with self.Session.begin() as session:
                session.add(NullifierRecord(nullifier_hash=key, used=False, tx_hash=tx_hash))
        except IntegrityError:
            logger.debug(f"Nullifier {key[:15]}... already used; submission not recorded")

    def clear_submission(self, nullifier_hash: int, tx_hash: str) -> None:
        with self.Session.begin() as session:
            session.execute(
                delete(NullifierRecord)
                .where(NullifierRecord.nullifier_hash == str(nullifier_hash),
                       NullifierRecord.used.is_(False),
                       NullifierRecord.tx_hash == tx_hash)
            )

    def mark_nullifier_used(self, nullifier_hash: int, tx_hash: Optional[str] = None) -> bool:
        """Atomically flip unused -> used; False if another transaction already used it.

        Without a tx hash the record keeps whatever transaction it already
        carries. A used record with no transaction can still be claimed by
        the transaction that actually spent the nullifier.
        """
        key = str(nullifier_hash)

        claimable = NullifierRecord.used.is_(False)
        values = {'used': True}
        if tx_hash is not None:
            claimable = or_(claimable, NullifierRecord.tx_hash.is_(None),
                            NullifierRecord.tx_hash == tx_hash)
            values['tx_hash'] = tx_hash

        with self.Session.begin() as session:
            result = session.execute(
                update(NullifierRecord)
                .where(NullifierRecord.nullifier_hash == key, claimable)
                .values(**values)
            )
            if result.rowcount == 1:
                return True

        try:
            with self.Session.begin() as session:
                session.add(NullifierRecord(nullifier_hash=key, used=True, tx_hash=tx_hash))
        except IntegrityError:
            logger.warning(f"Nullifier {key[:15]}... already marked as used")
            return False
        return True

    def close(self):
        self.engine.dispose()
