"""
Catalyst Storage

SQLAlchemy persistence for the pipeline.

Tables:
- catalysts: canonical records, unique on (ticker, event_date)
- prediction_cache: append-only predictor cache
- catalyst_outcomes: realized price reactions per catalyst
- company_profiles: linked entity data used for feature extraction

Inserts on the natural key use the dialect's INSERT ... ON CONFLICT DO
NOTHING so concurrent writers never need a check-then-write.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    insert,
    select,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from pipeline.errors import PersistenceError
from pipeline.models import (
    Catalyst,
    CatalystMetadata,
    CompanyProfile,
    PredictionCacheEntry,
)
from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

Base = declarative_base()


class CatalystRow(Base):
    """Stored catalyst. Natural key is (ticker, event_date)."""

    __tablename__ = "catalysts"
    __table_args__ = (
        UniqueConstraint("ticker", "event_date", name="uix_catalyst_natural_key"),
        Index("ix_catalyst_type_ticker_date", "type", "ticker", "event_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(32), nullable=False, index=True)
    ticker = Column(String(16), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    event_date = Column(DateTime, nullable=False, index=True)
    impact_score = Column(Float, nullable=False)
    confidence_score = Column(Float, nullable=False)
    metadata_json = Column(JSON, nullable=False, default=dict)
    embedding = Column(JSON, nullable=True)
    processed_text = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now)

    def __repr__(self) -> str:
        return f"<CatalystRow(id={self.id}, ticker={self.ticker}, type={self.type}, date={self.event_date})>"


class PredictionCacheRow(Base):
    """Append-only predictor output. Never updated in place."""

    __tablename__ = "prediction_cache"
    __table_args__ = (
        Index("ix_prediction_cache_catalyst_created", "catalyst_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    catalyst_id = Column(Integer, ForeignKey("catalysts.id"), nullable=False)
    impact_prediction = Column(Float, nullable=False)
    confidence_score = Column(Float, nullable=False)
    price_range_lower = Column(Float, nullable=False)
    price_range_upper = Column(Float, nullable=False)
    risk_factors = Column(JSON, nullable=False, default=list)
    similar_events = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=utc_now)


class CatalystOutcomeRow(Base):
    """Realized price reaction after a catalyst."""

    __tablename__ = "catalyst_outcomes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    catalyst_id = Column(Integer, ForeignKey("catalysts.id"), nullable=False, index=True)
    percentage_change = Column(Float, nullable=True)
    days_after = Column(Integer, nullable=True)
    price_before = Column(Float, nullable=True)
    price_after = Column(Float, nullable=True)
    recorded_at = Column(DateTime, nullable=False, default=utc_now)


class CompanyProfileRow(Base):
    """Company reference data keyed by ticker."""

    __tablename__ = "company_profiles"

    ticker = Column(String(16), primary_key=True)
    name = Column(String, nullable=True)
    market_cap = Column(Float, nullable=True)
    sector = Column(String, nullable=True)
    debt_to_equity = Column(Float, nullable=True)
    pre_market_volume = Column(Float, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utc_now)


def _row_to_catalyst(row: CatalystRow) -> Catalyst:
    return Catalyst(
        id=row.id,
        type=row.type,
        ticker=row.ticker,
        title=row.title,
        description=row.description or "",
        event_date=row.event_date,
        impact_score=row.impact_score,
        confidence_score=row.confidence_score,
        metadata=CatalystMetadata.from_dict(row.metadata_json, row.type),
        embedding=row.embedding,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_prediction(row: PredictionCacheRow) -> PredictionCacheEntry:
    return PredictionCacheEntry(
        id=row.id,
        catalyst_id=row.catalyst_id,
        impact_prediction=row.impact_prediction,
        confidence_score=row.confidence_score,
        price_range_lower=row.price_range_lower,
        price_range_upper=row.price_range_upper,
        risk_factors=list(row.risk_factors or []),
        similar_events=list(row.similar_events or []),
        created_at=row.created_at,
    )


def _row_to_profile(row: CompanyProfileRow) -> CompanyProfile:
    return CompanyProfile(
        ticker=row.ticker,
        name=row.name,
        market_cap=row.market_cap,
        sector=row.sector,
        debt_to_equity=row.debt_to_equity,
        pre_market_volume=row.pre_market_volume,
    )


class CatalystStore:
    """
    Durable store for catalysts, predictions, outcomes and profiles.

    Every public method opens its own short transaction. Write failures
    are raised as PersistenceError; earlier committed batches are kept.
    """

    def __init__(self, database_url: str):
        """
        Initialize store and create tables.

        Args:
            database_url: SQLAlchemy URL (sqlite:///path.db, postgresql://...)
        """
        self.database_url = database_url
        self.engine = self._create_engine(database_url)
        Base.metadata.create_all(self.engine)
        self._session = sessionmaker(bind=self.engine, expire_on_commit=False)

        logger.info(f"CatalystStore initialized ({self.engine.dialect.name})")

    @staticmethod
    def _create_engine(database_url: str):
        if not database_url.startswith("sqlite"):
            return create_engine(database_url, pool_pre_ping=True)

        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            db_path = database_url.split("sqlite:///", 1)[-1]
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(database_url, **kwargs)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    # ------------------------------------------------------------------
    # Catalysts
    # ------------------------------------------------------------------

    def _insert_ignore_stmt(self, values: dict):
        """INSERT ... ON CONFLICT (ticker, event_date) DO NOTHING RETURNING id."""
        table = CatalystRow.__table__
        if self.dialect == "sqlite":
            stmt = sqlite_insert(table).values(**values)
        elif self.dialect == "postgresql":
            stmt = pg_insert(table).values(**values)
        else:
            return None
        return stmt.on_conflict_do_nothing(
            index_elements=["ticker", "event_date"]
        ).returning(table.c.id)

    @staticmethod
    def _catalyst_values(catalyst: Catalyst) -> dict:
        now = utc_now()
        return {
            "type": catalyst.type,
            "ticker": catalyst.ticker,
            "title": catalyst.title,
            "description": catalyst.description,
            "event_date": catalyst.event_date,
            "impact_score": catalyst.impact_score,
            "confidence_score": catalyst.confidence_score,
            "metadata_json": catalyst.metadata.to_dict(),
            "embedding": catalyst.embedding,
            "created_at": now,
            "updated_at": now,
        }

    def insert_ignore(self, catalysts: Iterable[Catalyst]) -> List[Catalyst]:
        """
        Insert catalysts, skipping any whose natural key already exists.

        The whole batch is one transaction; a failure loses this batch only.

        Args:
            catalysts: Scored catalysts

        Returns:
            The catalysts actually inserted, with ids assigned
        """
        inserted: List[Catalyst] = []
        try:
            with self._session() as session, session.begin():
                for catalyst in catalysts:
                    values = self._catalyst_values(catalyst)
                    stmt = self._insert_ignore_stmt(values)

                    if stmt is not None:
                        new_id = session.execute(stmt).scalar_one_or_none()
                    else:
                        new_id = self._insert_ignore_generic(session, values)

                    if new_id is None:
                        logger.debug(f"Skipped existing catalyst {catalyst.ticker} @ {catalyst.event_date}")
                        continue

                    catalyst.id = new_id
                    catalyst.created_at = values["created_at"]
                    catalyst.updated_at = values["updated_at"]
                    inserted.append(catalyst)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Catalyst batch insert failed: {e}") from e

        return inserted

    @staticmethod
    def _insert_ignore_generic(session, values: dict) -> Optional[int]:
        """Fallback for dialects without ON CONFLICT: rely on the unique constraint."""
        try:
            with session.begin_nested():
                result = session.execute(insert(CatalystRow.__table__).values(**values))
            return result.inserted_primary_key[0]
        except IntegrityError:
            return None

    def get(self, catalyst_id: int) -> Optional[Catalyst]:
        with self._session() as session:
            row = session.get(CatalystRow, catalyst_id)
            return _row_to_catalyst(row) if row else None

    def get_by_key(self, ticker: str, event_date: datetime) -> Optional[Catalyst]:
        with self._session() as session:
            row = session.execute(
                select(CatalystRow).where(
                    CatalystRow.ticker == ticker,
                    CatalystRow.event_date == event_date,
                )
            ).scalar_one_or_none()
            return _row_to_catalyst(row) if row else None

    def count(self, catalyst_type: Optional[str] = None) -> int:
        with self._session() as session:
            stmt = select(func.count(CatalystRow.id))
            if catalyst_type:
                stmt = stmt.where(CatalystRow.type == catalyst_type)
            return session.execute(stmt).scalar_one()

    def count_prior(
        self,
        catalyst_type: str,
        ticker: str,
        before: datetime,
        limit: Optional[int] = None
    ) -> int:
        """Number of catalysts of the same (type, ticker) dated before `before`, capped at limit."""
        with self._session() as session:
            stmt = select(CatalystRow.id).where(
                CatalystRow.type == catalyst_type,
                CatalystRow.ticker == ticker,
                CatalystRow.event_date < before,
            )
            if limit:
                stmt = stmt.limit(limit)
            return len(session.execute(stmt).scalars().all())

    def history(
        self,
        catalyst_type: str,
        ticker: str,
        before: datetime,
        limit: int = 10
    ) -> List[Catalyst]:
        """Most recent prior catalysts of the same (type, ticker), newest first."""
        with self._session() as session:
            rows = session.execute(
                select(CatalystRow)
                .where(
                    CatalystRow.type == catalyst_type,
                    CatalystRow.ticker == ticker,
                    CatalystRow.event_date < before,
                )
                .order_by(CatalystRow.event_date.desc())
                .limit(limit)
            ).scalars().all()
            return [_row_to_catalyst(r) for r in rows]

    def list_catalysts(
        self,
        since: Optional[datetime] = None,
        limit: int = 100
    ) -> List[Catalyst]:
        """Catalysts updated since a timestamp, newest event first. Used for reconciliation."""
        with self._session() as session:
            stmt = select(CatalystRow)
            if since is not None:
                stmt = stmt.where(CatalystRow.updated_at >= since)
            rows = session.execute(
                stmt.order_by(CatalystRow.event_date.desc()).limit(limit)
            ).scalars().all()
            return [_row_to_catalyst(r) for r in rows]

    def missing_embeddings(self, limit: int) -> List[Catalyst]:
        with self._session() as session:
            rows = session.execute(
                select(CatalystRow)
                .where(CatalystRow.embedding.is_(None))
                .order_by(CatalystRow.id)
                .limit(limit)
            ).scalars().all()
            return [_row_to_catalyst(r) for r in rows]

    def set_embedding(self, catalyst_id: int, vector: List[float], processed_text: str) -> None:
        try:
            with self._session() as session, session.begin():
                row = session.get(CatalystRow, catalyst_id)
                if row is None:
                    raise PersistenceError(f"Catalyst {catalyst_id} vanished before embedding update")
                row.embedding = list(vector)
                row.processed_text = processed_text
                row.updated_at = utc_now()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Embedding update failed for {catalyst_id}: {e}") from e

    def update_scores(
        self,
        catalyst_id: int,
        impact_score: float,
        confidence_score: float,
        metadata: CatalystMetadata
    ) -> Catalyst:
        """Overwrite scores and metadata for an existing catalyst (explicit re-score only)."""
        try:
            with self._session() as session, session.begin():
                row = session.get(CatalystRow, catalyst_id)
                if row is None:
                    raise PersistenceError(f"Catalyst {catalyst_id} not found for re-score")
                row.impact_score = impact_score
                row.confidence_score = confidence_score
                row.metadata_json = metadata.to_dict()
                row.updated_at = utc_now()
                session.flush()
                return _row_to_catalyst(row)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Score update failed for {catalyst_id}: {e}") from e

    def with_embeddings(
        self,
        exclude_id: Optional[int] = None,
        catalyst_type: Optional[str] = None,
        limit: Optional[int] = None,
        before: Optional[datetime] = None,
        exclude_ticker: Optional[str] = None
    ) -> List[Catalyst]:
        """
        Catalysts that already carry an embedding.

        With `before`, only events dated strictly earlier are returned, newest
        first, so a `limit` keeps the most recent history.
        """
        with self._session() as session:
            stmt = select(CatalystRow).where(CatalystRow.embedding.is_not(None))
            if exclude_id is not None:
                stmt = stmt.where(CatalystRow.id != exclude_id)
            if exclude_ticker:
                stmt = stmt.where(CatalystRow.ticker != exclude_ticker)
            if catalyst_type:
                stmt = stmt.where(CatalystRow.type == catalyst_type)
            if before is not None:
                stmt = stmt.where(CatalystRow.event_date < before).order_by(CatalystRow.event_date.desc())
            else:
                stmt = stmt.order_by(CatalystRow.id)
            if limit:
                stmt = stmt.limit(limit)
            return [_row_to_catalyst(r) for r in session.execute(stmt).scalars().all()]

    def candidates_by_type(
        self,
        catalyst_type: str,
        exclude_ticker: Optional[str] = None,
        limit: int = 5
    ) -> List[Catalyst]:
        """Catalysts of a type for other tickers, newest first."""
        with self._session() as session:
            stmt = select(CatalystRow).where(CatalystRow.type == catalyst_type)
            if exclude_ticker:
                stmt = stmt.where(CatalystRow.ticker != exclude_ticker)
            rows = session.execute(
                stmt.order_by(CatalystRow.event_date.desc()).limit(limit)
            ).scalars().all()
            return [_row_to_catalyst(r) for r in rows]

    def newest_for_type(
        self,
        catalyst_type: str,
        order_by: str = "event_date"
    ) -> Tuple[int, Optional[datetime]]:
        """
        Record count and newest timestamp for a catalyst type.

        Args:
            catalyst_type: Catalyst type to inspect
            order_by: 'event_date' or 'created_at'

        Returns:
            (record_count, newest timestamp or None)
        """
        column = CatalystRow.created_at if order_by == "created_at" else CatalystRow.event_date
        with self._session() as session:
            count, newest = session.execute(
                select(func.count(CatalystRow.id), func.max(column))
                .where(CatalystRow.type == catalyst_type)
            ).one()
            return count, newest

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def record_outcome(
        self,
        catalyst_id: int,
        percentage_change: Optional[float],
        days_after: Optional[int] = None,
        price_before: Optional[float] = None,
        price_after: Optional[float] = None
    ) -> int:
        try:
            with self._session() as session, session.begin():
                row = CatalystOutcomeRow(
                    catalyst_id=catalyst_id,
                    percentage_change=percentage_change,
                    days_after=days_after,
                    price_before=price_before,
                    price_after=price_after,
                )
                session.add(row)
                session.flush()
                return row.id
        except SQLAlchemyError as e:
            raise PersistenceError(f"Outcome insert failed for {catalyst_id}: {e}") from e

    def outcomes_for(self, catalyst_ids: Iterable[int]) -> Dict[int, List[dict]]:
        """Recorded outcomes grouped by catalyst id."""
        ids = list(catalyst_ids)
        grouped: Dict[int, List[dict]] = {cid: [] for cid in ids}
        if not ids:
            return grouped

        with self._session() as session:
            rows = session.execute(
                select(CatalystOutcomeRow)
                .where(CatalystOutcomeRow.catalyst_id.in_(ids))
                .order_by(CatalystOutcomeRow.id)
            ).scalars().all()
            for row in rows:
                grouped[row.catalyst_id].append({
                    "percentage_change": row.percentage_change,
                    "days_after": row.days_after,
                    "price_before": row.price_before,
                    "price_after": row.price_after,
                })
        return grouped

    # ------------------------------------------------------------------
    # Company profiles
    # ------------------------------------------------------------------

    def upsert_profile(self, profile: CompanyProfile) -> None:
        """Insert or refresh a company profile (reference data, last write wins)."""
        values = {
            "ticker": profile.ticker,
            "name": profile.name,
            "market_cap": profile.market_cap,
            "sector": profile.sector,
            "debt_to_equity": profile.debt_to_equity,
            "pre_market_volume": profile.pre_market_volume,
            "updated_at": utc_now(),
        }
        try:
            with self._session() as session, session.begin():
                if self.dialect in ("sqlite", "postgresql"):
                    insert_fn = sqlite_insert if self.dialect == "sqlite" else pg_insert
                    stmt = insert_fn(CompanyProfileRow.__table__).values(**values)
                    stmt = stmt.on_conflict_do_update(
                        index_elements=["ticker"],
                        set_={k: v for k, v in values.items() if k != "ticker"},
                    )
                    session.execute(stmt)
                else:
                    session.merge(CompanyProfileRow(**values))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Profile upsert failed for {profile.ticker}: {e}") from e

    def get_profile(self, ticker: str) -> Optional[CompanyProfile]:
        with self._session() as session:
            row = session.get(CompanyProfileRow, ticker)
            return _row_to_profile(row) if row else None

    # ------------------------------------------------------------------
    # Prediction cache
    # ------------------------------------------------------------------

    def append_prediction(self, entry: PredictionCacheEntry) -> PredictionCacheEntry:
        """Append a cache entry. Existing entries are never touched."""
        try:
            with self._session() as session, session.begin():
                row = PredictionCacheRow(
                    catalyst_id=entry.catalyst_id,
                    impact_prediction=entry.impact_prediction,
                    confidence_score=entry.confidence_score,
                    price_range_lower=entry.price_range_lower,
                    price_range_upper=entry.price_range_upper,
                    risk_factors=list(entry.risk_factors),
                    similar_events=list(entry.similar_events),
                    created_at=entry.created_at,
                )
                session.add(row)
                session.flush()
                entry.id = row.id
        except SQLAlchemyError as e:
            raise PersistenceError(f"Prediction append failed for {entry.catalyst_id}: {e}") from e
        return entry

    def latest_prediction(self, catalyst_id: int) -> Optional[PredictionCacheEntry]:
        with self._session() as session:
            row = session.execute(
                select(PredictionCacheRow)
                .where(PredictionCacheRow.catalyst_id == catalyst_id)
                .order_by(PredictionCacheRow.created_at.desc(), PredictionCacheRow.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            return _row_to_prediction(row) if row else None

    def prediction_count(self, catalyst_id: int) -> int:
        with self._session() as session:
            return session.execute(
                select(func.count(PredictionCacheRow.id))
                .where(PredictionCacheRow.catalyst_id == catalyst_id)
            ).scalar_one()

    def close(self) -> None:
        self.engine.dispose()
