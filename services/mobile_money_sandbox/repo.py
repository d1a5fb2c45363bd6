"""SQLAlchemy repository for sandbox mobile-money transactions.

Each collection request the marketplace sends is stored once, keyed by the
merchant's ``transaction_id``; a retry of the same request returns the row
created the first time. Settlement moves a row from ``PENDING`` to
``SUCCESS`` or ``FAILED`` exactly once.

The database URL comes from ``SANDBOX_DATABASE_URL`` and defaults to a local
SQLite file, so the sandbox runs without any infrastructure.
"""

import hashlib
import json
import os
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, DateTime, String, UniqueConstraint, create_engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Session, mapped_column

DATABASE_URL = os.getenv("SANDBOX_DATABASE_URL", "sqlite:///./sandbox.db")
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, pool_pre_ping=True, connect_args=_connect_args)

PENDING = "PENDING"
SUCCESS = "SUCCESS"
FAILED = "FAILED"


class Base(DeclarativeBase):
    pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SandboxTransaction(Base):
    """One collection request as the provider sees it.

    Attributes:
        id: Provider-side reference returned to the merchant.
        internal_id: Monotonic counter, used to build readable references.
        merchant_transaction_id: The merchant's own reference; unique.
        request_hash: Canonical hash of the original request body.
        status: ``PENDING``, ``SUCCESS`` or ``FAILED``.
    """

    __tablename__ = "sandbox_transactions"

    id = mapped_column(String(64), primary_key=True)
    internal_id = mapped_column(BigInteger, unique=True, nullable=True)
    merchant_id = mapped_column(String(64), nullable=False)
    merchant_transaction_id = mapped_column(String(64), nullable=False)
    request_hash = mapped_column(String(64), nullable=False)
    amount = mapped_column(BigInteger, nullable=False)
    currency = mapped_column(String(3), nullable=False)
    phone_number = mapped_column(String(32), nullable=False)
    callback_url = mapped_column(String(500), nullable=False, default="")
    status = mapped_column(String(16), nullable=False, default=PENDING)
    created_at = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = mapped_column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    __table_args__ = (
        UniqueConstraint("merchant_transaction_id", name="ux_sandbox_merchant_tx"),
    )


def canonical_hash(payload: dict) -> str:
    """Deterministic SHA-256 of a JSON payload (sorted keys, compact separators)."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@contextmanager
def get_session():
    """Yield a session bound to the configured engine; closed on exit."""
    with Session(engine) as s:
        yield s


def _next_internal_id(session: Session) -> int:
    """Next ``internal_id`` under a lock on the current maximum."""
    last = (
        session.execute(
            select(SandboxTransaction)
            .order_by(SandboxTransaction.internal_id.desc())
            .with_for_update()
            .limit(1)
        )
        .scalars()
        .first()
    )
    return 1 if not last or last.internal_id is None else last.internal_id + 1


class RequestConflict(Exception):
    """The merchant reused a transaction id with a different request."""


class AlreadySettled(Exception):
    pass


class SandboxRepo:
    def create_or_get(
        self,
        *,
        merchant_id: str,
        merchant_transaction_id: str,
        request_hash: str,
        amount: int,
        currency: str,
        phone_number: str,
        callback_url: str,
    ) -> tuple[SandboxTransaction, bool]:
        """Store a new collection request, or return the one already stored.

        Returns:
            ``(transaction, created)``.

        Raises:
            RequestConflict: The merchant transaction id exists with another hash.
        """
        with get_session() as s:
            try:
                nid = _next_internal_id(s)
                tx = SandboxTransaction(
                    id=f"TMS-{nid:08d}-{uuid.uuid4().hex[:6].upper()}",
                    internal_id=nid,
                    merchant_id=merchant_id,
                    merchant_transaction_id=merchant_transaction_id,
                    request_hash=request_hash,
                    amount=amount,
                    currency=currency,
                    phone_number=phone_number,
                    callback_url=callback_url,
                )
                s.add(tx)
                s.commit()
                s.refresh(tx)
                s.expunge(tx)
                return tx, True
            except IntegrityError as exc:
                s.rollback()
                conflict = exc

            tx = (
                s.execute(
                    select(SandboxTransaction).where(
                        SandboxTransaction.merchant_transaction_id == merchant_transaction_id
                    )
                )
                .scalars()
                .first()
            )
            if tx is None:
                raise conflict
            if tx.request_hash != request_hash:
                raise RequestConflict(merchant_transaction_id)
            s.expunge(tx)
            return tx, False

    def get(self, tx_id: str) -> Optional[SandboxTransaction]:
        with get_session() as s:
            tx = s.get(SandboxTransaction, tx_id)
            if tx is not None:
                s.expunge(tx)
            return tx

    def settle(self, tx_id: str, outcome: str) -> Optional[SandboxTransaction]:
        """Move a pending transaction to ``outcome``.

        Raises:
            AlreadySettled: The transaction is no longer pending.
        """
        with get_session() as s:
            tx = s.execute(
                select(SandboxTransaction).where(SandboxTransaction.id == tx_id).with_for_update()
            ).scalars().first()
            if tx is None:
                return None
            if tx.status != PENDING:
                raise AlreadySettled(tx_id)
            tx.status = outcome
            s.commit()
            s.refresh(tx)
            s.expunge(tx)
            return tx


Base.metadata.create_all(engine)
