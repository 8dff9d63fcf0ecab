"""SQLAlchemy-backed repository with push-down listing aggregation.

The engine is synchronous; every call runs in the event loop's default
executor so route handlers stay async. Statements are built from a
``ListingQueryPlan`` with bound parameters only.
"""

import asyncio
import time
import uuid
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, TypeVar

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Select,
    String,
    Text,
    TypeDecorator,
    and_,
    case,
    cast,
    create_engine,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from review_aggregator.core.errors import (
    DuplicateListingError,
    DuplicateReviewError,
    PersistenceError,
    ReviewNotFoundError,
    SlugConflictError,
)
from review_aggregator.models.reviews import (
    AuditAction,
    Listing,
    ListingWithStats,
    Review,
    ReviewAuditEntry,
    ReviewSource,
    ReviewStatus,
)
from review_aggregator.services.aggregator import ReviewGroup, bound_fraction, stats_from_groups
from review_aggregator.storage.query_plan import (
    ListingFilters,
    ListingQueryPlan,
    ReviewFilters,
    ReviewQueryPlan,
)
from review_aggregator.storage.repository import audit_entry, status_change
from review_aggregator.telemetry.logger import get_logger

T = TypeVar("T")


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, returns aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    pass


class ListingRow(Base):
    __tablename__ = "listings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    external_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class ReviewRow(Base):
    __tablename__ = "reviews"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    external_id: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    listing_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("listings.id"), nullable=True, index=True
    )
    guest_name: Mapped[str] = mapped_column(String(255), nullable=False)
    comment: Mapped[str] = mapped_column(Text, default="")
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    categories: Mapped[dict] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    # ``metadata`` is reserved on declarative classes.
    review_metadata: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    raw: Mapped[dict] = mapped_column(JSON, default=dict)


class ReviewAuditRow(Base):
    __tablename__ = "review_audit_log"

    # Insertion order; ids are random.
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    review_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("reviews.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    actor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    previous_status: Mapped[str] = mapped_column(String(16), nullable=False)
    new_status: Mapped[str] = mapped_column(String(16), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)


def _listing(row: ListingRow) -> Listing:
    return Listing(
        id=row.id,
        external_id=row.external_id,
        name=row.name,
        slug=row.slug,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _review(row: ReviewRow) -> Review:
    return Review(
        id=row.id,
        external_id=row.external_id,
        source=ReviewSource(row.source),
        listing_id=row.listing_id,
        guest_name=row.guest_name,
        comment=row.comment or "",
        rating=row.rating,
        categories=row.categories or {},
        status=ReviewStatus(row.status),
        approved_by=row.approved_by,
        approved_at=row.approved_at,
        submitted_at=row.submitted_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
        metadata=row.review_metadata or {},
        raw=row.raw or {},
    )


def _review_row(review: Review) -> ReviewRow:
    return ReviewRow(
        id=review.id,
        external_id=review.external_id,
        source=ReviewSource(review.source).value,
        listing_id=review.listing_id,
        guest_name=review.guest_name,
        comment=review.comment,
        rating=review.rating,
        categories=dict(review.categories),
        status=ReviewStatus(review.status).value,
        approved_by=review.approved_by,
        approved_at=review.approved_at,
        submitted_at=review.submitted_at,
        created_at=review.created_at,
        updated_at=review.updated_at,
        review_metadata=review.metadata,
        raw=review.raw,
    )


def _audit_entry(row: ReviewAuditRow) -> ReviewAuditEntry:
    return ReviewAuditEntry(
        id=row.id,
        review_id=row.review_id,
        action=AuditAction(row.action),
        actor=row.actor,
        previous_status=ReviewStatus(row.previous_status),
        new_status=ReviewStatus(row.new_status),
        timestamp=row.timestamp,
    )


def _audit_row(entry: ReviewAuditEntry) -> ReviewAuditRow:
    return ReviewAuditRow(
        id=entry.id,
        review_id=entry.review_id,
        action=entry.action.value,
        actor=entry.actor,
        previous_status=entry.previous_status.value,
        new_status=entry.new_status.value,
        timestamp=entry.timestamp,
    )


def _review_conditions(filters: ReviewFilters) -> list:
    conditions = []
    if filters.listing_id is not None:
        conditions.append(ReviewRow.listing_id == filters.listing_id)
    if filters.status is not None:
        conditions.append(ReviewRow.status == filters.status)
    if filters.channels:
        conditions.append(ReviewRow.source.in_(filters.channels))
    if filters.min_rating is not None:
        conditions.append(ReviewRow.rating >= filters.min_rating)
    if filters.max_rating is not None:
        conditions.append(ReviewRow.rating <= filters.max_rating)
    if filters.submitted_from is not None:
        conditions.append(ReviewRow.submitted_at >= filters.submitted_from)
    if filters.submitted_to is not None:
        conditions.append(ReviewRow.submitted_at <= filters.submitted_to)
    if filters.search:
        conditions.append(
            or_(
                ReviewRow.guest_name.icontains(filters.search, autoescape=True),
                ReviewRow.comment.icontains(filters.search, autoescape=True),
            )
        )
    return conditions


def build_review_page_statement(plan: ReviewQueryPlan) -> Select:
    """One page of reviews; unrated reviews sort last when ordering by rating."""
    column = getattr(ReviewRow, plan.sort_by)
    order = [column.desc() if plan.descending else column.asc(), ReviewRow.id.asc()]
    if plan.sort_by == "rating":
        order.insert(0, case((ReviewRow.rating.is_(None), 1), else_=0))
    return (
        _filtered(select(ReviewRow), plan.filters)
        .order_by(*order)
        .offset(plan.offset)
        .limit(plan.limit)
    )


def build_review_count_statement(plan: ReviewQueryPlan) -> Select:
    return _filtered(select(func.count(ReviewRow.id)), plan.filters)


def _filtered(stmt: Select, filters: ReviewFilters) -> Select:
    conditions = _review_conditions(filters)
    return stmt.where(and_(*conditions)) if conditions else stmt


def _review_join(filters: ListingFilters):
    # Channel filter belongs to the join so excluded reviews are not counted.
    condition = ReviewRow.listing_id == ListingRow.id
    if filters.channels:
        condition = and_(condition, ReviewRow.source.in_(filters.channels))
    return condition


def _rating_tenths():
    # Ratings carry one decimal, so the sum is an exact integer.
    return func.sum(func.round(ReviewRow.rating * 10))


def _rated_count():
    return func.count(ReviewRow.rating)


def _mean_compared(bound: float, at_least: bool):
    # mean >= p/q  <=>  tenths * q >= 10 * p * rated, all integers.
    fraction = bound_fraction(bound)
    left = _rating_tenths() * fraction.denominator
    right = _rated_count() * (10 * fraction.numerator)
    return and_(_rated_count() > 0, left >= right if at_least else left <= right)


def _grouped_listings(plan: ListingQueryPlan) -> Select:
    filters = plan.filters
    review_count = func.count(ReviewRow.id)

    stmt = (
        select(
            ListingRow,
            review_count.label("review_count"),
            func.count(case((ReviewRow.status == ReviewStatus.APPROVED.value, ReviewRow.id)))
            .label("approved_count"),
            func.max(ReviewRow.submitted_at).label("last_review_date"),
        )
        .select_from(ListingRow)
        .outerjoin(ReviewRow, _review_join(filters))
        .group_by(ListingRow.id)
    )

    if filters.search:
        stmt = stmt.where(
            or_(
                ListingRow.name.icontains(filters.search, autoescape=True),
                ListingRow.slug.icontains(filters.search, autoescape=True),
                ListingRow.external_id.icontains(filters.search, autoescape=True),
            )
        )
    if filters.min_reviews:
        stmt = stmt.having(review_count >= filters.min_reviews)
    if filters.min_rating is not None:
        stmt = stmt.having(_mean_compared(filters.min_rating, at_least=True))
    if filters.max_rating is not None:
        stmt = stmt.having(_mean_compared(filters.max_rating, at_least=False))
    return stmt


def build_listing_aggregate_statement(plan: ListingQueryPlan) -> Select:
    """Filtered, sorted, paginated listing aggregates as one statement.

    Ordering: listings without a rated review last, then mean rating in the
    plan direction, then review count DESC, then name ASC. The mean is
    ordered as tenths over count; equal fractions divide to the same float.
    """
    mean = cast(_rating_tenths(), Float) / func.nullif(_rated_count(), 0)
    mean_order = mean.desc() if plan.descending else mean.asc()
    return (
        _grouped_listings(plan)
        .order_by(
            case((_rated_count() == 0, 1), else_=0),
            mean_order,
            func.count(ReviewRow.id).desc(),
            ListingRow.name.asc(),
        )
        .offset(plan.offset)
        .limit(plan.limit)
    )


def build_listing_count_statement(plan: ListingQueryPlan) -> Select:
    return select(func.count()).select_from(_grouped_listings(plan).subquery())


def build_breakdown_statement(listing_ids: list[str], filters: ListingFilters) -> Select:
    stmt = (
        select(ReviewRow.listing_id, ReviewRow.rating, ReviewRow.source, func.count(ReviewRow.id))
        .where(ReviewRow.listing_id.in_(listing_ids))
        .group_by(ReviewRow.listing_id, ReviewRow.rating, ReviewRow.source)
    )
    if filters.channels:
        stmt = stmt.where(ReviewRow.source.in_(filters.channels))
    return stmt


class SqlReviewRepository:
    """``ReviewRepository`` over any SQLAlchemy URL (sqlite, postgres)."""

    def __init__(self, database_url: str | None = None, *, engine: Engine | None = None):
        if engine is None:
            if database_url is None:
                raise ValueError("database_url or engine is required")
            connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
            engine = create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)
        self.engine = engine
        self.session_factory = sessionmaker(bind=engine, expire_on_commit=False, class_=Session)
        self.logger = get_logger("sql_review_repository")

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        start_time = time.time()
        try:
            return await loop.run_in_executor(None, partial(fn, *args))
        except SQLAlchemyError as exc:
            self.logger.error(
                "Database operation failed",
                extra={
                    "db_operation": fn.__name__,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "duration_seconds": time.time() - start_time,
                    "operation": "db_operation_failed",
                },
            )
            raise PersistenceError(f"{fn.__name__} failed: {exc}") from exc

    # Reviews

    async def find_review_by_external_id(self, external_id: str) -> Review | None:
        return await self._run(self._find_review_by_external_id, external_id)

    def _find_review_by_external_id(self, external_id: str) -> Review | None:
        with self.session_factory() as session:
            row = session.scalars(
                select(ReviewRow).where(ReviewRow.external_id == external_id)
            ).first()
            return _review(row) if row else None

    async def insert_review(self, review: Review) -> Review:
        return await self._run(self._insert_review, review)

    def _insert_review(self, review: Review) -> Review:
        with self.session_factory() as session:
            session.add(_review_row(review))
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                if self._find_review_by_external_id(review.external_id) is not None:
                    raise DuplicateReviewError(review.external_id) from exc
                raise PersistenceError(f"review insert rejected: {exc.orig}") from exc
        return review

    async def get_review(self, review_id: str) -> Review | None:
        return await self._run(self._get_review, review_id)

    def _get_review(self, review_id: str) -> Review | None:
        with self.session_factory() as session:
            row = session.get(ReviewRow, review_id)
            return _review(row) if row else None

    async def list_reviews_for_listing(self, listing_id: str) -> list[Review]:
        return await self._run(self._list_reviews_for_listing, listing_id)

    def _list_reviews_for_listing(self, listing_id: str) -> list[Review]:
        with self.session_factory() as session:
            rows = session.scalars(
                select(ReviewRow)
                .where(ReviewRow.listing_id == listing_id)
                .order_by(ReviewRow.submitted_at.desc())
            ).all()
            return [_review(row) for row in rows]

    async def update_review_status(
        self, review_id: str, status: ReviewStatus, approver: str | None
    ) -> Review:
        return await self._run(self._update_review_status, review_id, status, approver)

    def _update_review_status(
        self, review_id: str, status: ReviewStatus, approver: str | None
    ) -> Review:
        with self.session_factory() as session:
            row = session.get(ReviewRow, review_id)
            if row is None:
                raise ReviewNotFoundError(review_id)
            previous = ReviewStatus(row.status)
            for field, value in status_change(status, approver).items():
                setattr(row, field, value.value if isinstance(value, ReviewStatus) else value)
            session.add(_audit_row(audit_entry(review_id, previous, status, approver)))
            session.commit()
            return _review(row)

    async def list_review_history(self, review_id: str) -> list[ReviewAuditEntry]:
        return await self._run(self._list_review_history, review_id)

    def _list_review_history(self, review_id: str) -> list[ReviewAuditEntry]:
        with self.session_factory() as session:
            rows = session.scalars(
                select(ReviewAuditRow)
                .where(ReviewAuditRow.review_id == review_id)
                .order_by(ReviewAuditRow.seq.desc())
            ).all()
            return [_audit_entry(row) for row in rows]

    async def query_reviews(self, plan: ReviewQueryPlan) -> tuple[list[Review], int]:
        return await self._run(self._query_reviews, plan)

    def _query_reviews(self, plan: ReviewQueryPlan) -> tuple[list[Review], int]:
        with self.session_factory() as session:
            rows = session.scalars(build_review_page_statement(plan)).all()
            total = session.execute(build_review_count_statement(plan)).scalar_one()
            return [_review(row) for row in rows], total

    # Listings

    async def get_listing(self, listing_id: str) -> Listing | None:
        return await self._run(self._get_listing, listing_id)

    def _get_listing(self, listing_id: str) -> Listing | None:
        with self.session_factory() as session:
            row = session.get(ListingRow, listing_id)
            return _listing(row) if row else None

    async def find_listing_by_slug(self, slug: str) -> Listing | None:
        return await self._run(self._find_listing, ListingRow.slug, slug)

    async def find_listing_by_external_id(self, external_id: str) -> Listing | None:
        return await self._run(self._find_listing, ListingRow.external_id, external_id)

    def _find_listing(self, column, value: str) -> Listing | None:
        with self.session_factory() as session:
            row = session.scalars(select(ListingRow).where(column == value)).first()
            return _listing(row) if row else None

    async def insert_listing(self, listing: Listing) -> Listing:
        return await self._run(self._insert_listing, listing)

    def _insert_listing(self, listing: Listing) -> Listing:
        with self.session_factory() as session:
            session.add(
                ListingRow(
                    id=listing.id,
                    external_id=listing.external_id,
                    name=listing.name,
                    slug=listing.slug,
                    created_at=listing.created_at,
                    updated_at=listing.updated_at,
                )
            )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                if self._find_listing(ListingRow.slug, listing.slug) is not None:
                    raise SlugConflictError(listing.slug) from exc
                if self._find_listing(ListingRow.external_id, listing.external_id) is not None:
                    raise DuplicateListingError(listing.external_id) from exc
                raise PersistenceError(f"listing insert rejected: {exc.orig}") from exc
        return listing

    # Aggregates

    async def query_listings_with_aggregates(
        self, plan: ListingQueryPlan
    ) -> tuple[list[ListingWithStats], int]:
        correlation_id = str(uuid.uuid4())
        start_time = time.time()

        (page, groups), total = await asyncio.gather(
            self._run(self._aggregate_page, plan),
            self._run(self._count_listings, plan),
        )

        listings = []
        for row in page:
            stats = stats_from_groups(
                groups.get(row.ListingRow.id, []),
                approved_reviews=row.approved_count,
                last_review_date=row.last_review_date,
            )
            listings.append(ListingWithStats(**_listing(row.ListingRow).model_dump(), stats=stats))

        self.logger.info(
            "Listing aggregate query completed",
            extra={
                "correlation_id": correlation_id,
                "returned": len(listings),
                "total": total,
                "offset": plan.offset,
                "limit": plan.limit,
                "duration_seconds": time.time() - start_time,
                "operation": "listing_aggregate_query",
            },
        )
        return listings, total

    def _aggregate_page(self, plan: ListingQueryPlan):
        with self.session_factory() as session:
            page = session.execute(build_listing_aggregate_statement(plan)).all()
            groups: dict[str, list[ReviewGroup]] = {}
            listing_ids = [row.ListingRow.id for row in page]
            if listing_ids:
                breakdown = session.execute(build_breakdown_statement(listing_ids, plan.filters))
                for listing_id, rating, source, count in breakdown:
                    groups.setdefault(listing_id, []).append(ReviewGroup(rating, source, count))
            return page, groups

    def _count_listings(self, plan: ListingQueryPlan) -> int:
        with self.session_factory() as session:
            return session.execute(build_listing_count_statement(plan)).scalar_one()
