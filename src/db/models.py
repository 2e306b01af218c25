"""SQLAlchemy 2.0 models for the KPI trigger engine database.

Defines the core domain models:
- User: Employees and the staff who receive automation mail
- KPIScore: One scored KPI submission per user and period
- KPIConfiguration: Versioned scoring and trigger configuration documents
- TrainingAssignment: Training workflow state
- AuditSchedule: Audit workflow state
- EmailLog: One row per email dispatch attempt
- Notification: In-app notifications
- LifecycleEvent: Append-only user timeline

All models use UUID primary keys and timezone-aware timestamps. Column
types are portable so the same models run on PostgreSQL and SQLite.
"""

import enum
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.db.base import Base, JSONType, enum_column


def utc_now() -> datetime:
    """Current time in UTC, used as the python-side default for timestamps."""
    return datetime.now(tz=UTC)


# =============================================================================
# Enums
# =============================================================================


class UserRole(str, enum.Enum):
    """User role enumeration.

    Roles double as email recipient groups for automation mail.

    Attributes:
        ADMIN: Portal administrator
        EMPLOYEE: Field employee whose KPIs are scored
        COORDINATOR: Coordination team member
        MANAGER: Line manager
        HOD: Head of department
        COMPLIANCE: Compliance team member
    """

    ADMIN = "admin"
    EMPLOYEE = "employee"
    COORDINATOR = "coordinator"
    MANAGER = "manager"
    HOD = "hod"
    COMPLIANCE = "compliance"


class KPIMetric(str, enum.Enum):
    """Raw KPI metrics captured per submission.

    Attributes:
        TAT: Turn-around-time compliance rate (0-100, higher is better)
        MAJOR_NEGATIVITY: Count of major negative cases
        QUALITY: Quality rate (0-100, higher is better)
        NEIGHBOR_CHECK: Neighbor check completion rate (0-100, higher is better)
        GENERAL_NEGATIVITY: General negativity rate (0-100, lower is better)
        APP_USAGE: Share of cases done on the app (0-100, higher is better)
        INSUFFICIENCY: Count of insufficient cases
    """

    TAT = "tat"
    MAJOR_NEGATIVITY = "major_negativity"
    QUALITY = "quality"
    NEIGHBOR_CHECK = "neighbor_check"
    GENERAL_NEGATIVITY = "general_negativity"
    APP_USAGE = "app_usage"
    INSUFFICIENCY = "insufficiency"


class MetricKind(str, enum.Enum):
    """How a raw metric value is normalized to the 0-100 scale.

    Attributes:
        RATE_HIGHER_IS_BETTER: Value is used as-is
        RATE_LOWER_IS_BETTER: Value is inverted (100 - value)
        COUNT: Each event subtracts a configured penalty, floored at 0
    """

    RATE_HIGHER_IS_BETTER = "rate_higher_is_better"
    RATE_LOWER_IS_BETTER = "rate_lower_is_better"
    COUNT = "count"


class Rating(str, enum.Enum):
    """Rating labels derived from the composite score.

    Declaration order runs from best to worst.
    """

    EXCELLENT = "excellent"
    GOOD = "good"
    AVERAGE = "average"
    BELOW_AVERAGE = "below_average"
    POOR = "poor"

    @property
    def label(self) -> str:
        """Human-readable label, e.g. ``Below Average``."""
        return self.value.replace("_", " ").title()


class AutomationStatus(str, enum.Enum):
    """Automation state of a KPI score.

    Attributes:
        PENDING: Scored, automation not yet run
        PROCESSING: Claimed by a worker, dispatch in progress
        COMPLETED: Every action succeeded or was a benign skip
        FAILED: Every action failed, or evaluation itself failed
        PARTIALLY_FAILED: Some actions failed, others succeeded
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIALLY_FAILED = "partially_failed"


class KPISource(str, enum.Enum):
    """Origin of a KPI submission.

    ``computed`` is reserved for scores the engine derives itself; API
    callers may only declare ``manual`` or ``bulk_upload``.
    """

    MANUAL = "manual"
    BULK_UPLOAD = "bulk_upload"
    COMPUTED = "computed"


class TrainingType(str, enum.Enum):
    """Closed set of training modules that can be assigned."""

    BASIC = "basic"
    NEGATIVITY_HANDLING = "negativity_handling"
    DOS_DONTS = "dos_donts"
    APP_USAGE = "app_usage"


class TrainingStatus(str, enum.Enum):
    """Training assignment workflow states.

    Attributes:
        ASSIGNED: Assigned, not started
        IN_PROGRESS: Employee started the training
        COMPLETED: Training finished
        CANCELLED: Assignment withdrawn
    """

    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AssignmentSource(str, enum.Enum):
    """Who created a training assignment or audit."""

    KPI_TRIGGER = "kpi_trigger"
    MANUAL = "manual"


class AuditType(str, enum.Enum):
    """Closed set of audits that can be scheduled."""

    AUDIT_CALL = "audit_call"
    CROSS_CHECK = "cross_check"
    DUMMY_AUDIT = "dummy_audit"
    CROSS_VERIFY_INSUFF = "cross_verify_insuff"


class AuditStatus(str, enum.Enum):
    """Audit workflow states."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RiskLevel(str, enum.Enum):
    """Risk level recorded when an audit completes."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ComplianceStatus(str, enum.Enum):
    """Compliance outcome recorded when an audit completes."""

    COMPLIANT = "compliant"
    PARTIALLY_COMPLIANT = "partially_compliant"
    NON_COMPLIANT = "non_compliant"


class EmailTemplate(str, enum.Enum):
    """Closed set of automation email templates."""

    KPI_NOTIFICATION = "kpi_notification"
    TRAINING_ASSIGNMENT = "training_assignment"
    AUDIT_NOTIFICATION = "audit_notification"
    PERFORMANCE_WARNING = "performance_warning"


class EmailStatus(str, enum.Enum):
    """Outcome of a single email dispatch attempt."""

    SENT = "sent"
    FAILED = "failed"


class NotificationType(str, enum.Enum):
    """In-app notification categories."""

    KPI_SCORE = "kpi_score"
    TRAINING = "training"
    AUDIT = "audit"
    WARNING = "warning"


class NotificationStatus(str, enum.Enum):
    """Notification read state.

    Attributes:
        UNREAD: Not yet opened
        READ: Opened by the user
        ACKNOWLEDGED: Explicitly acknowledged (final)
    """

    UNREAD = "unread"
    READ = "read"
    ACKNOWLEDGED = "acknowledged"


class LifecycleEventType(str, enum.Enum):
    """Lifecycle timeline event types."""

    KPI_RECORDED = "kpi_recorded"
    KPI_OVERRIDDEN = "kpi_overridden"
    TRAINING_ASSIGNED = "training_assigned"
    TRAINING_COMPLETED = "training_completed"
    TRAINING_CANCELLED = "training_cancelled"
    AUDIT_SCHEDULED = "audit_scheduled"
    AUDIT_COMPLETED = "audit_completed"
    AUDIT_CANCELLED = "audit_cancelled"
    EMAIL_SENT = "email_sent"
    EMAIL_FAILED = "email_failed"
    WARNING_ISSUED = "warning_issued"


class LifecycleCategory(str, enum.Enum):
    """Tone of a lifecycle event on the timeline."""

    MILESTONE = "milestone"
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class ConfigChangeKind(str, enum.Enum):
    """Reason a configuration version was written."""

    SEED = "seed"
    UPDATE_METRICS = "update_metrics"
    UPDATE_TRIGGERS = "update_triggers"
    RESET = "reset"
    IMPORT = "import"


# =============================================================================
# Models
# =============================================================================


class User(Base):
    """Employee or staff member.

    Attributes:
        id: Unique identifier (UUID).
        email: Unique email address.
        name: Display name.
        employee_id: Optional HR employee code.
        role: Role, also used for email recipient resolution.
        department: Optional department name.
        is_active: Inactive users never receive automation mail.
        created_at: Account creation timestamp.
        updated_at: Last modification timestamp.

    Relationships:
        kpi_scores: KPI scores recorded for this user.

    Example:
        >>> user = User(email="fe@example.com", name="Field Employee", role=UserRole.EMPLOYEE)
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255))
    employee_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    role: Mapped[UserRole] = mapped_column(enum_column(UserRole), default=UserRole.EMPLOYEE)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now)

    kpi_scores: Mapped[list["KPIScore"]] = relationship(
        "KPIScore",
        foreign_keys="KPIScore.user_id",
        back_populates="user",
    )

    __table_args__ = (Index("ix_users_role", "role"),)


class KPIScore(Base):
    """Scored KPI submission for one user and one period.

    The composite score and rating are derived at creation; only the
    orchestrator changes the automation fields afterwards. An admin
    override supersedes score and rating for display without touching
    automation.

    Attributes:
        id: Unique identifier (UUID).
        user_id: Scored employee.
        period: Year-month, ``YYYY-MM``.
        source: How the submission entered the system.
        submitted_by_id: Staff member who submitted, if known.
        tat, quality, neighbor_check, general_negativity, app_usage: Rates (0-100).
        major_negativity, insufficiency: Event counts.
        overall_score: Derived composite score (0-100).
        rating: Derived rating.
        config_version: Configuration version that computed the score and
            rating. The version that evaluated the trigger rules is kept in
            ``automation_result``.
        automation_status: Automation state machine position.
        claimed_at: When the current or last worker claimed the record.
        processed_at: When automation last finished.
        automation_result: Per-action outcomes of the last run.
        override_score, override_rating, override_reason: Admin override.
        overridden_by_id, overridden_at: Override audit fields.
        comments: Free-form submission comments.
    """

    __tablename__ = "kpi_scores"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    period: Mapped[str] = mapped_column(String(7))
    source: Mapped[KPISource] = mapped_column(enum_column(KPISource), default=KPISource.MANUAL)
    submitted_by_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Raw inputs
    tat: Mapped[float] = mapped_column(Float)
    major_negativity: Mapped[int] = mapped_column(Integer)
    quality: Mapped[float] = mapped_column(Float)
    neighbor_check: Mapped[float] = mapped_column(Float)
    general_negativity: Mapped[float] = mapped_column(Float)
    app_usage: Mapped[float] = mapped_column(Float)
    insufficiency: Mapped[int] = mapped_column(Integer)

    # Derived
    overall_score: Mapped[float] = mapped_column(Float)
    rating: Mapped[Rating] = mapped_column(enum_column(Rating))
    config_version: Mapped[int] = mapped_column(Integer)

    # Automation
    automation_status: Mapped[AutomationStatus] = mapped_column(
        enum_column(AutomationStatus), default=AutomationStatus.PENDING
    )
    claimed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    automation_result: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)

    # Override
    override_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    override_rating: Mapped[Rating | None] = mapped_column(enum_column(Rating), nullable=True)
    override_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    overridden_by_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    overridden_at: Mapped[datetime | None] = mapped_column(nullable=True)

    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now)

    user: Mapped["User"] = relationship("User", foreign_keys=[user_id], back_populates="kpi_scores")

    __table_args__ = (
        UniqueConstraint("user_id", "period", name="uq_kpi_scores_user_period"),
        Index("ix_kpi_scores_user_id", "user_id"),
        Index("ix_kpi_scores_automation_status", "automation_status"),
        Index("ix_kpi_scores_rating", "rating"),
        Index("ix_kpi_scores_created_at", "created_at"),
    )

    @property
    def effective_score(self) -> float:
        """Score shown in reports: the override when present."""
        return self.override_score if self.override_score is not None else self.overall_score

    @property
    def effective_rating(self) -> Rating:
        """Rating shown in reports: the override when present."""
        return self.override_rating if self.override_rating is not None else self.rating

    @property
    def is_overridden(self) -> bool:
        return self.override_score is not None or self.override_rating is not None


class KPIConfiguration(Base):
    """One version of the scoring and trigger configuration document.

    Exactly one row is active. Rows are never updated except to clear
    ``is_active`` when a newer version supersedes them.

    Attributes:
        id: Unique identifier (UUID).
        version: Monotonic version number.
        document: Full configuration document (metrics, bands, rules).
        change_kind: Why this version was written.
        changed_by_id: Staff member who made the change, if known.
        is_active: Whether this is the active version.
        created_at: When the version was written.
    """

    __tablename__ = "kpi_configurations"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    version: Mapped[int] = mapped_column(Integer, unique=True)
    document: Mapped[dict[str, Any]]
    change_kind: Mapped[ConfigChangeKind] = mapped_column(enum_column(ConfigChangeKind))
    changed_by_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)

    __table_args__ = (Index("ix_kpi_configurations_is_active", "is_active"),)


# Open states for the duplicate-avoidance partial indexes.
_OPEN_TRAINING = text("status IN ('assigned', 'in_progress')")
_OPEN_AUDIT = text("status IN ('scheduled', 'in_progress')")


class TrainingAssignment(Base):
    """Training assignment and workflow state.

    At most one open (assigned or in-progress) assignment exists per user
    and training type; a partial unique index enforces it.

    Attributes:
        id: Unique identifier (UUID).
        user_id: Trainee.
        training_type: Training module.
        status: Workflow status.
        assigned_by: ``kpi_trigger`` or ``manual``.
        assigned_by_user_id: Staff member for manual assignments.
        kpi_score_id: Triggering KPI score (null for manual).
        due_date: When the training is due.
        reason: Why the training was assigned.
        notes: Completion or cancellation notes.
        completion_score: Score achieved on completion.
        started_at, completed_at, cancelled_at: Transition timestamps.
    """

    __tablename__ = "training_assignments"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    training_type: Mapped[TrainingType] = mapped_column(enum_column(TrainingType))
    status: Mapped[TrainingStatus] = mapped_column(enum_column(TrainingStatus), default=TrainingStatus.ASSIGNED)
    assigned_by: Mapped[AssignmentSource] = mapped_column(enum_column(AssignmentSource))
    assigned_by_user_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    kpi_score_id: Mapped[UUID | None] = mapped_column(ForeignKey("kpi_scores.id", ondelete="SET NULL"), nullable=True)
    due_date: Mapped[datetime]
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    completion_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("ix_training_assignments_kpi_score_id", "kpi_score_id"),
        Index("ix_training_assignments_user_status", "user_id", "status"),
        Index(
            "uq_training_assignments_open_user_type",
            "user_id",
            "training_type",
            unique=True,
            postgresql_where=_OPEN_TRAINING,
            sqlite_where=_OPEN_TRAINING,
        ),
    )


class AuditSchedule(Base):
    """Scheduled audit and workflow state.

    At most one open (scheduled or in-progress) audit exists per user and
    audit type; a partial unique index enforces it.

    Attributes:
        id: Unique identifier (UUID).
        user_id: Audited employee.
        audit_type: Kind of audit.
        status: Workflow status.
        scheduled_by: ``kpi_trigger`` or ``manual``.
        scheduled_by_user_id: Staff member for manual schedules.
        kpi_score_id: Triggering KPI score (null for manual).
        scheduled_date: When the audit takes place.
        audit_scope: Why the audit was scheduled.
        audit_method: How the audit is performed.
        findings, risk_level, compliance_status: Completion outcome.
        started_at, completed_at, cancelled_at: Transition timestamps.
    """

    __tablename__ = "audit_schedules"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    audit_type: Mapped[AuditType] = mapped_column(enum_column(AuditType))
    status: Mapped[AuditStatus] = mapped_column(enum_column(AuditStatus), default=AuditStatus.SCHEDULED)
    scheduled_by: Mapped[AssignmentSource] = mapped_column(enum_column(AssignmentSource))
    scheduled_by_user_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    kpi_score_id: Mapped[UUID | None] = mapped_column(ForeignKey("kpi_scores.id", ondelete="SET NULL"), nullable=True)
    scheduled_date: Mapped[datetime]
    audit_scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    audit_method: Mapped[str | None] = mapped_column(Text, nullable=True)
    findings: Mapped[str | None] = mapped_column(Text, nullable=True)
    risk_level: Mapped[RiskLevel | None] = mapped_column(enum_column(RiskLevel), nullable=True)
    compliance_status: Mapped[ComplianceStatus | None] = mapped_column(enum_column(ComplianceStatus), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("ix_audit_schedules_kpi_score_id", "kpi_score_id"),
        Index("ix_audit_schedules_user_status", "user_id", "status"),
        Index("ix_audit_schedules_scheduled_date", "scheduled_date"),
        Index(
            "uq_audit_schedules_open_user_type",
            "user_id",
            "audit_type",
            unique=True,
            postgresql_where=_OPEN_AUDIT,
            sqlite_where=_OPEN_AUDIT,
        ),
    )


class EmailLog(Base):
    """One email dispatch attempt.

    Rows are append-only: a retry writes a new row pointing at the attempt
    it retries, so failure records survive for audit.

    Attributes:
        id: Unique identifier (UUID).
        kpi_score_id: Triggering KPI score (null for ad-hoc mail).
        user_id: Employee the mail is about.
        template: Email template.
        recipients: Resolved recipient addresses.
        subject: Rendered subject line.
        status: ``sent`` or ``failed``.
        error_message: Transport error on failure.
        attempt_number: 1 for the first attempt, incremented per retry.
        retry_of_id: Attempt this row retries.
        created_at: When the attempt was made.
    """

    __tablename__ = "email_logs"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    kpi_score_id: Mapped[UUID | None] = mapped_column(ForeignKey("kpi_scores.id", ondelete="SET NULL"), nullable=True)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    template: Mapped[EmailTemplate] = mapped_column(enum_column(EmailTemplate))
    recipients: Mapped[list[str]] = mapped_column(JSONType, default=list)
    subject: Mapped[str] = mapped_column(String(255))
    status: Mapped[EmailStatus] = mapped_column(enum_column(EmailStatus))
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempt_number: Mapped[int] = mapped_column(Integer, default=1)
    retry_of_id: Mapped[UUID | None] = mapped_column(ForeignKey("email_logs.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)

    __table_args__ = (
        Index("ix_email_logs_kpi_score_template", "kpi_score_id", "template"),
        Index("ix_email_logs_user_id", "user_id"),
        Index("ix_email_logs_status", "status"),
    )


class Notification(Base):
    """In-app notification.

    Automation creates at most one notification per KPI score and type.

    Attributes:
        id: Unique identifier (UUID).
        user_id: Recipient.
        kpi_score_id: Triggering KPI score (null for ad-hoc notifications).
        notification_type: Category.
        title: Short headline.
        message: Body text.
        status: unread -> read -> acknowledged.
        read_at, acknowledged_at: Transition timestamps.
    """

    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    kpi_score_id: Mapped[UUID | None] = mapped_column(ForeignKey("kpi_scores.id", ondelete="SET NULL"), nullable=True)
    notification_type: Mapped[NotificationType] = mapped_column(enum_column(NotificationType))
    title: Mapped[str] = mapped_column(String(255))
    message: Mapped[str] = mapped_column(Text)
    status: Mapped[NotificationStatus] = mapped_column(
        enum_column(NotificationStatus), default=NotificationStatus.UNREAD
    )
    read_at: Mapped[datetime | None] = mapped_column(nullable=True)
    acknowledged_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)

    __table_args__ = (
        UniqueConstraint("kpi_score_id", "notification_type", name="uq_notifications_kpi_score_type"),
        Index("ix_notifications_user_status", "user_id", "status"),
    )


class LifecycleEvent(Base):
    """Append-only timeline entry for a user.

    Attributes:
        id: Unique identifier (UUID).
        user_id: User the event is about.
        event_type: What happened.
        category: Tone on the timeline.
        title: Short headline.
        description: Optional detail.
        details: Structured payload (ids, scores, templates).
        kpi_score_id: Related KPI score, when any.
        triggered_by_id: Staff member who caused the event, when known.
        created_at: When the event was recorded.
    """

    __tablename__ = "lifecycle_events"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    event_type: Mapped[LifecycleEventType] = mapped_column(enum_column(LifecycleEventType))
    category: Mapped[LifecycleCategory] = mapped_column(enum_column(LifecycleCategory))
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
    kpi_score_id: Mapped[UUID | None] = mapped_column(ForeignKey("kpi_scores.id", ondelete="SET NULL"), nullable=True)
    triggered_by_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)

    __table_args__ = (
        Index("ix_lifecycle_events_user_created", "user_id", "created_at"),
        Index("ix_lifecycle_events_event_type", "event_type"),
    )
