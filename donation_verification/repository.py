"""
Donation Verification - SQL Repository.

============================================================
PURPOSE
============================================================
DonationStore over the relational database (SQLAlchemy async).

RESPONSIBILITIES:
- Load donations with their verification record
- Save/override/delete verification records
- Fund flows and admin bulk deletes

CRITICAL REQUIREMENTS:
- Every write runs in an explicit transaction scope
- Failures roll back and surface as typed errors
- Naive UTC columns are normalized on read
- Relationships are loaded eagerly (no lazy IO on AsyncSession)

============================================================
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Union

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import selectinload
from sqlalchemy.pool import StaticPool

from .adapters.base import BulkEntity, DonationStore
from .models import (
    Base,
    BlockchainVerificationModel,
    CharityFundFlowModel,
    CharityModel,
    DonationModel,
    UserModel,
)
from .queries import VerificationPage, VerificationQuery
from .timestamps import TimestampNormalizer
from .types import (
    BulkItemResult,
    BulkResult,
    Donation,
    FundFlow,
    NotFoundError,
    PaymentStatus,
    VerificationEngineError,
    VerificationRecord,
)


logger = logging.getLogger(__name__)

_normalizer = TimestampNormalizer()

# Sync driver URLs are mapped to their async drivers
_ASYNC_DRIVERS = {
    "sqlite": "sqlite+aiosqlite",
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
}


# ============================================================
# ENGINE / SESSION HELPERS
# ============================================================

def to_async_url(database_url: str) -> str:
    """sqlite:// -> sqlite+aiosqlite://, postgresql:// -> postgresql+asyncpg://"""
    scheme, sep, rest = database_url.partition("://")
    if not sep:
        return database_url
    return f"{_ASYNC_DRIVERS.get(scheme, scheme)}://{rest}"


def create_session_factory(database_url: str, echo: bool = False) -> async_sessionmaker:
    """
    Create an async session factory for a database URL.

    In-memory SQLite shares one connection so every session
    sees the same database.
    """
    database_url = to_async_url(database_url)
    kwargs: Dict[str, Any] = {"echo": echo}
    in_memory_sqlite = database_url.startswith("sqlite") and (
        ":memory:" in database_url or database_url.endswith("://")
    )
    if in_memory_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
        kwargs["poolclass"] = StaticPool

    engine = create_async_engine(database_url, **kwargs)
    logger.info(f"Creating database engine for: {database_url.split('@')[-1]}")

    return async_sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


async def init_schema(bind: Union[AsyncEngine, async_sessionmaker]) -> None:
    """Create all tables that do not exist yet."""
    engine = bind.kw["bind"] if isinstance(bind, async_sessionmaker) else bind
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Donation schema initialized")


def _to_db_datetime(value: Optional[datetime]) -> Optional[datetime]:
    """Aware -> naive UTC for storage."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# ============================================================
# ROW MAPPING
# ============================================================

def record_from_model(model: BlockchainVerificationModel) -> VerificationRecord:
    return VerificationRecord(
        donation_id=model.donation_id,
        verified=bool(model.verified),
        transaction_hash=model.transaction_hash,
        block_number=model.block_number or 0,
        timestamp=_normalizer.instant_or_none(model.timestamp),
        submitted_at=_normalizer.instant_or_none(model.submitted_at),
        network=model.network or "sepolia",
    )


def donation_from_model(model: DonationModel) -> Donation:
    return Donation(
        donation_id=model.id,
        amount=model.amount,
        currency=model.currency or "RON",
        payment_status=PaymentStatus.parse(model.payment_status),
        donor_id=model.donor_id,
        charity_id=model.charity_id,
        project_id=model.project_id,
        anonymous=bool(model.anonymous),
        message=model.message,
        created_at=_normalizer.instant_or_none(model.created_at),
        verification=record_from_model(model.verification) if model.verification else None,
    )


def _apply_record(model: BlockchainVerificationModel, record: VerificationRecord) -> None:
    model.verified = record.verified
    model.transaction_hash = record.transaction_hash
    model.block_number = record.block_number or 0
    model.timestamp = _to_db_datetime(record.timestamp)
    model.submitted_at = _to_db_datetime(record.submitted_at)
    model.network = record.network


_SORT_COLUMNS = {
    "createdAt": BlockchainVerificationModel.created_at,
    "verified": BlockchainVerificationModel.verified,
    "blockNumber": BlockchainVerificationModel.block_number,
    "timestamp": BlockchainVerificationModel.timestamp,
    "transactionHash": BlockchainVerificationModel.transaction_hash,
}

_UPDATABLE_FIELDS = {
    "verified",
    "transaction_hash",
    "block_number",
    "timestamp",
    "submitted_at",
    "network",
}


# ============================================================
# SQL DONATION STORE
# ============================================================

class SqlDonationStore(DonationStore):
    """
    Repository for donation and verification persistence.

    Each call completes within one AsyncSession transaction scope.
    """

    def __init__(self, session_factory: async_sessionmaker):
        """
        Initialize repository.

        Args:
            session_factory: SQLAlchemy async session factory
        """
        self._session_factory = session_factory

    @asynccontextmanager
    async def session_scope(self) -> AsyncIterator[AsyncSession]:
        """
        Transaction scope: commit on success, roll back on ANY exception.

        SQLAlchemy errors are re-raised as VerificationEngineError.
        """
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database transaction failed, rolling back: {e}")
            await session.rollback()
            raise VerificationEngineError(
                f"Database operation failed: {e}",
                code="INT_PERSISTENCE_ERROR",
            ) from e
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    # --------------------------------------------------------
    # SEEDING
    # --------------------------------------------------------

    async def add_user(self, user_id: str, name: Optional[str] = None, email: Optional[str] = None) -> None:
        async with self.session_scope() as session:
            await session.merge(UserModel(id=user_id, name=name, email=email))

    async def add_charity(self, charity_id: str, name: Optional[str] = None) -> None:
        async with self.session_scope() as session:
            await session.merge(CharityModel(id=charity_id, name=name))

    async def add_donation(self, donation: Donation) -> None:
        """Insert a donation (and its record, if any)."""
        donation.validate()
        async with self.session_scope() as session:
            model = DonationModel(
                id=donation.donation_id,
                amount=donation.amount,
                currency=donation.currency,
                payment_status=donation.payment_status.value,
                donor_id=donation.donor_id,
                charity_id=donation.charity_id,
                project_id=donation.project_id,
                anonymous=donation.anonymous,
                message=donation.message,
            )
            if donation.created_at is not None:
                model.created_at = _to_db_datetime(donation.created_at)
            if donation.verification is not None:
                verification = BlockchainVerificationModel(donation_id=donation.donation_id)
                _apply_record(verification, donation.verification)
                model.verification = verification
            session.add(model)

    async def set_fund_flow(self, charity_id: str, flow: FundFlow) -> None:
        async with self.session_scope() as session:
            await session.merge(CharityFundFlowModel(
                charity_id=charity_id,
                total_received=flow.total_received,
                total_disbursed=flow.total_disbursed,
            ))

    # --------------------------------------------------------
    # DONATIONS
    # --------------------------------------------------------

    def _donation_query(self):
        return select(DonationModel).options(selectinload(DonationModel.verification))

    async def _load_donations(self, statement) -> List[Donation]:
        async with self.session_scope() as session:
            models = (await session.scalars(statement)).all()
            return [donation_from_model(m) for m in models]

    async def get_donation(self, donation_id: str) -> Optional[Donation]:
        donations = await self._load_donations(
            self._donation_query().where(DonationModel.id == donation_id)
        )
        return donations[0] if donations else None

    async def list_donor_donations(self, donor_id: str) -> List[Donation]:
        return await self._load_donations(
            self._donation_query()
            .where(DonationModel.donor_id == donor_id)
            .order_by(DonationModel.created_at)
        )

    async def list_charity_donations(self, charity_id: str) -> List[Donation]:
        return await self._load_donations(
            self._donation_query()
            .where(DonationModel.charity_id == charity_id)
            .order_by(DonationModel.created_at)
        )

    async def list_all_donations(self) -> List[Donation]:
        return await self._load_donations(self._donation_query())

    async def get_fund_flow(self, charity_id: str) -> Optional[FundFlow]:
        async with self.session_scope() as session:
            model = await session.get(CharityFundFlowModel, charity_id)
            if model is None:
                return None
            return FundFlow(
                total_received=model.total_received,
                total_disbursed=model.total_disbursed,
            )

    # --------------------------------------------------------
    # VERIFICATION RECORDS
    # --------------------------------------------------------

    async def _verification_model(
        self,
        session: AsyncSession,
        donation_id: str,
    ) -> Optional[BlockchainVerificationModel]:
        result = await session.scalars(
            select(BlockchainVerificationModel)
            .where(BlockchainVerificationModel.donation_id == donation_id)
        )
        return result.first()

    async def get_verification(self, donation_id: str) -> Optional[VerificationRecord]:
        async with self.session_scope() as session:
            model = await self._verification_model(session, donation_id)
            return record_from_model(model) if model else None

    async def save_verification(self, record: VerificationRecord) -> VerificationRecord:
        async with self.session_scope() as session:
            if await session.get(DonationModel, record.donation_id) is None:
                raise NotFoundError(f"Donation {record.donation_id} not found")

            model = await self._verification_model(session, record.donation_id)
            if model is None:
                model = BlockchainVerificationModel(donation_id=record.donation_id)
                session.add(model)
            _apply_record(model, record)
            await session.flush()

            logger.debug(f"Saved verification for donation {record.donation_id}")
            return record_from_model(model)

    async def list_verifications(self, query: VerificationQuery) -> VerificationPage:
        conditions = []
        if query.verified is not None:
            conditions.append(BlockchainVerificationModel.verified == query.verified)
        if query.search:
            pattern = f"%{query.search}%"
            conditions.append(or_(
                BlockchainVerificationModel.donation_id.ilike(pattern),
                BlockchainVerificationModel.transaction_hash.ilike(pattern),
            ))

        column = _SORT_COLUMNS[query.sort_by]
        order = column.desc() if query.sort_order == "desc" else column.asc()

        async with self.session_scope() as session:
            total = await session.scalar(
                select(func.count()).select_from(BlockchainVerificationModel).where(*conditions)
            ) or 0

            models = (await session.scalars(
                select(BlockchainVerificationModel)
                .where(*conditions)
                .order_by(order, BlockchainVerificationModel.id)
                .offset(query.offset)
                .limit(query.limit)
            )).all()

            return VerificationPage(
                items=[record_from_model(m) for m in models],
                page=query.page,
                limit=query.limit,
                total=total,
            )

    async def update_verification(
        self,
        donation_id: str,
        changes: Dict[str, Any],
    ) -> VerificationRecord:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown verification fields: {sorted(unknown)}")

        async with self.session_scope() as session:
            model = await self._verification_model(session, donation_id)
            if model is None:
                raise NotFoundError(f"Verification for donation {donation_id} not found")

            for key, value in changes.items():
                if isinstance(value, datetime):
                    value = _to_db_datetime(value)
                setattr(model, key, value)
            await session.flush()

            logger.info(f"Verification for donation {donation_id} updated: {sorted(changes)}")
            return record_from_model(model)

    async def delete_verification(self, donation_id: str) -> bool:
        async with self.session_scope() as session:
            model = await self._verification_model(session, donation_id)
            if model is None:
                return False
            await session.delete(model)
            logger.info(f"Verification for donation {donation_id} deleted")
            return True

    # --------------------------------------------------------
    # BULK OPERATIONS
    # --------------------------------------------------------

    async def bulk_delete(self, entity: BulkEntity, ids: Iterable[str]) -> BulkResult:
        """
        Each id is deleted in its own transaction.

        Owned donations are loaded up front so their links are
        nulled without lazy loads.
        """
        if entity == BulkEntity.USERS:
            model_class = UserModel
            eager = [selectinload(UserModel.donations)]
        else:
            model_class = CharityModel
            eager = [selectinload(CharityModel.donations), selectinload(CharityModel.fund_flow)]
        items = []

        for item_id in dict.fromkeys(ids):
            try:
                async with self.session_scope() as session:
                    model = await session.get(model_class, item_id, options=eager)
                    if model is None:
                        raise NotFoundError(f"{model_class.__tablename__} row {item_id} not found")
                    await session.delete(model)
                items.append(BulkItemResult(item_id=item_id, success=True))
            except VerificationEngineError as e:
                items.append(BulkItemResult(
                    item_id=item_id,
                    success=False,
                    error=e.message,
                    error_code=e.code,
                ))

        result = BulkResult.from_items(items)
        logger.info(
            f"Bulk delete {entity.value}: "
            f"{result.successful}/{result.total} deleted"
        )
        return result
