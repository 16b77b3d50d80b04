"""
HOOKWATCH - Webhook Monitoring Data Models
==========================================
Models for webhooks, test runs, executions, metrics, alerts and notifications.
"""

from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Union
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator
import uuid

from hookwatch.core.exceptions import ExecutionStateException, AlertStateException


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class HealthStatus(str, Enum):
    """Derived webhook health."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNREACHABLE = "unreachable"
    UNKNOWN = "unknown"


class TestType(str, Enum):
    """Test execution modes."""
    __test__ = False

    QUICK = "quick"
    COMPREHENSIVE = "comprehensive"
    PERFORMANCE = "performance"
    CUSTOM = "custom"


class DataGenerationMethod(str, Enum):
    AUTO = "auto"
    CUSTOM = "custom"
    TEMPLATE = "template"
    RECORDED = "recorded"


class TestStatus(str, Enum):
    """Test run lifecycle."""
    __test__ = False

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ExecutionType(str, Enum):
    MANUAL_TEST = "manual_test"
    AUTOMATIC_TRIGGER = "automatic_trigger"
    SCHEDULED = "scheduled"
    PREVIEW_TEST = "preview_test"


class ExecutionStatus(str, Enum):
    """Outcome of a single invocation."""
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"


class AlertSeverity(str, Enum):
    """Alert severity levels."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class NotificationChannelType(str, Enum):
    """Notification channels."""
    IN_APP = "in_app"
    EMAIL = "email"
    SMS = "sms"
    SLACK = "slack"
    WEBHOOK = "webhook"


class DeliveryStatus(str, Enum):
    """Per-channel delivery status."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


# =============================================================================
# WEBHOOK CONFIGURATION
# =============================================================================

class WebhookConfig(BaseModel):
    """Webhook endpoint under test."""
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: str = Field(default_factory=lambda: f"wh_{uuid.uuid4().hex[:16]}")
    organization_id: str
    element_id: Optional[str] = None

    # Endpoint
    name: str = Field(..., min_length=1, max_length=100)
    endpoint_url: Optional[str] = None
    method: HttpMethod = HttpMethod.POST

    # Headers to include
    headers: Dict[str, str] = Field(default_factory=dict)

    timeout_seconds: float = Field(default=30, gt=0)
    retry_count: int = 0
    rate_limit_per_minute: int = 60

    # Status
    is_active: bool = True
    health_status: HealthStatus = HealthStatus.UNKNOWN
    last_health_check: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class TestTemplate(BaseModel):
    """Stored test payload with expectations."""
    __test__ = False

    id: str = Field(default_factory=lambda: f"tpl_{uuid.uuid4().hex[:12]}")
    organization_id: str
    name: str
    description: Optional[str] = None
    test_data: Dict[str, Any] = Field(default_factory=dict)
    expected_status_codes: List[int] = Field(default_factory=lambda: [200])
    expected_response_time_ms: Optional[int] = None
    created_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# TEST CONFIGURATION
# =============================================================================

class ResponseValidationRule(BaseModel):
    """Rule over a dotted path in the response body."""
    field_path: str
    validation_type: str  # exists, equals, contains, matches, type
    expected_value: Optional[Any] = None
    regex_pattern: Optional[str] = None

    @field_validator("validation_type")
    @classmethod
    def check_validation_type(cls, v):
        if v not in ("exists", "equals", "contains", "matches", "type"):
            raise ValueError(f"Unsupported validation type: {v}")
        return v


class TestConfiguration(BaseModel):
    """Immutable configuration of a single test run."""
    __test__ = False
    model_config = ConfigDict(use_enum_values=True, validate_default=True, frozen=True)

    webhook_id: str
    element_id: Optional[str] = None
    test_type: TestType = TestType.QUICK

    # Data generation
    data_generation_method: DataGenerationMethod = DataGenerationMethod.AUTO
    use_template: Optional[str] = None
    custom_payload: Optional[Union[Dict[str, Any], str]] = None
    template_variables: Dict[str, Any] = Field(default_factory=dict)

    # Expectations
    expected_status_codes: List[int] = Field(default_factory=lambda: [200])
    expected_response_time_ms: Optional[int] = None
    response_validation_rules: List[ResponseValidationRule] = Field(default_factory=list)

    # Performance
    concurrent_requests: int = Field(default=5, ge=1)
    duration_seconds: float = Field(default=30, gt=0)
    ramp_up_time_seconds: float = Field(default=5, ge=0)

    # Notifications
    notify_on_completion: bool = False
    notify_on_failure: bool = False
    notification_channels: List[NotificationChannelType] = Field(default_factory=list)
    notification_settings: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("expected_status_codes")
    @classmethod
    def check_status_codes(cls, v):
        if not v:
            raise ValueError("expected_status_codes cannot be empty")
        return v


# =============================================================================
# EXECUTIONS
# =============================================================================

class Execution(BaseModel):
    """Record of one webhook invocation."""
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: str = Field(default_factory=lambda: f"exec_{uuid.uuid4().hex[:16]}")
    organization_id: str
    webhook_id: str
    element_id: Optional[str] = None

    execution_type: ExecutionType = ExecutionType.MANUAL_TEST
    test_scenario: Optional[str] = None

    # Request details
    request_url: str = ""
    request_method: str = "POST"
    request_headers: Dict[str, str] = Field(default_factory=dict)
    request_payload: Dict[str, Any] = Field(default_factory=dict)

    # Result
    status: ExecutionStatus = ExecutionStatus.PENDING
    success: bool = False
    response_status_code: Optional[int] = None
    response_body: Optional[Any] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    response_time_ms: Optional[int] = None

    # Timestamps
    execution_started_at: datetime = Field(default_factory=utc_now)
    execution_completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def is_finalized(self) -> bool:
        return self.execution_completed_at is not None

    def finalize(
        self,
        success: bool,
        status_code: int,
        response_time_ms: int,
        response_body: Optional[Any] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> "Execution":
        """Record the outcome. Allowed once."""
        if self.is_finalized:
            raise ExecutionStateException(self.id, str(self.status))

        if status is None:
            if success:
                status = ExecutionStatus.SUCCESS
            elif error_code == "network_timeout":
                status = ExecutionStatus.TIMEOUT
            else:
                status = ExecutionStatus.ERROR

        self.status = ExecutionStatus(status).value
        self.success = success
        self.response_status_code = status_code
        self.response_body = response_body
        self.response_time_ms = response_time_ms
        self.error_code = error_code
        self.error_message = error_message
        self.execution_completed_at = utc_now()
        return self


# =============================================================================
# TEST RESULTS
# =============================================================================

class ValidationViolation(BaseModel):
    rule: str
    expected: Optional[Any] = None
    actual: Optional[Any] = None
    message: str


class ErrorBucket(BaseModel):
    """Aggregated occurrences of one (error_code, error_message) pair."""
    error_code: Optional[str] = None
    error_message: str
    occurrences: int = 1
    first_occurred_at: datetime = Field(default_factory=utc_now)
    last_occurred_at: datetime = Field(default_factory=utc_now)


class TestResult(BaseModel):
    """Aggregate outcome of a test run."""
    __test__ = False
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    test_id: str = Field(default_factory=lambda: f"test_{uuid.uuid4().hex[:16]}")
    webhook_id: str
    element_id: Optional[str] = None
    test_configuration: TestConfiguration

    # Timing
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    status: TestStatus = TestStatus.PENDING

    # Counts
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0

    # Stats
    avg_response_time_ms: float = 0
    min_response_time_ms: float = 0
    max_response_time_ms: float = 0
    requests_per_second: float = 0

    # Validation
    validation_passed: bool = False
    validation_errors: List[ValidationViolation] = Field(default_factory=list)

    errors: List[ErrorBucket] = Field(default_factory=list)
    executions: List[Execution] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in (TestStatus.COMPLETED, TestStatus.FAILED, TestStatus.CANCELLED)

    @property
    def success_rate(self) -> float:
        if not self.total_requests:
            return 0.0
        return self.successful_requests / self.total_requests * 100

    def attach(self, execution: Execution) -> None:
        """Add an execution and keep the counters in step with it."""
        self.executions.append(execution)
        self.total_requests += 1
        if execution.success:
            self.successful_requests += 1
        else:
            self.failed_requests += 1
            self.record_error(
                execution.error_code,
                execution.error_message or "Unknown error",
                execution.execution_completed_at,
            )

    def record_error(
        self,
        error_code: Optional[str],
        error_message: str,
        occurred_at: Optional[datetime] = None,
    ) -> ErrorBucket:
        occurred_at = occurred_at or utc_now()
        for bucket in self.errors:
            if bucket.error_code == error_code and bucket.error_message == error_message:
                bucket.occurrences += 1
                bucket.last_occurred_at = occurred_at
                return bucket

        bucket = ErrorBucket(
            error_code=error_code,
            error_message=error_message,
            first_occurred_at=occurred_at,
            last_occurred_at=occurred_at,
        )
        self.errors.append(bucket)
        return bucket

    def compute_statistics(self, elapsed_seconds: float) -> None:
        """Response-time stats over successful executions, RPS over all."""
        times = [
            e.response_time_ms for e in self.executions
            if e.success and e.response_time_ms is not None
        ]
        if times:
            self.avg_response_time_ms = sum(times) / len(times)
            self.min_response_time_ms = min(times)
            self.max_response_time_ms = max(times)

        if elapsed_seconds > 0:
            self.requests_per_second = self.total_requests / elapsed_seconds

    def transition(self, status: TestStatus) -> None:
        self.status = TestStatus(status).value


# =============================================================================
# METRICS
# =============================================================================

class PerformanceMetrics(BaseModel):
    """Rolled-up webhook performance over a time window."""
    id: str = Field(default_factory=lambda: f"met_{uuid.uuid4().hex[:12]}")
    organization_id: str
    webhook_id: str
    element_id: Optional[str] = None

    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    window_minutes: int = 60

    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0

    avg_response_time_ms: float = 0
    p95_response_time_ms: float = 0
    success_rate_percentage: float = 0
    error_rate_percentage: float = 0
    performance_score: float = Field(default=0, ge=0, le=10)

    created_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# ALERTS
# =============================================================================

_ALERT_STATE_RANK = {"unresolved": 0, "acknowledged": 1, "resolved": 2}


class Alert(BaseModel):
    """Triggered alert instance."""
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: str = Field(default_factory=lambda: f"alert_{uuid.uuid4().hex[:16]}")
    organization_id: str
    webhook_id: str
    element_id: Optional[str] = None

    alert_type: str  # error_rate, response_time, availability, test_failure, ...
    severity: AlertSeverity = AlertSeverity.WARNING
    message: str
    triggered_at: datetime = Field(default_factory=utc_now)

    # Status
    acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    resolved: bool = False
    resolved_at: Optional[datetime] = None

    # Context (error_rate, response_time, performance_score, failure_count ...)
    alert_data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def state(self) -> str:
        if self.resolved:
            return "resolved"
        if self.acknowledged:
            return "acknowledged"
        return "unresolved"

    def is_backward_transition(self, new: "Alert") -> bool:
        return _ALERT_STATE_RANK[new.state] < _ALERT_STATE_RANK[self.state]

    def acknowledge(self, user_id: str) -> "Alert":
        if self.resolved:
            raise AlertStateException(self.id, self.state, "acknowledged")
        if not self.acknowledged:
            self.acknowledged = True
            self.acknowledged_by = user_id
            self.acknowledged_at = utc_now()
        return self

    def resolve(self) -> "Alert":
        if not self.resolved:
            self.resolved = True
            self.resolved_at = utc_now()
        return self


# =============================================================================
# NOTIFICATION RULES
# =============================================================================

class TriggerConditions(BaseModel):
    """Thresholds; 0 or None disables a condition."""
    failure_threshold: Optional[int] = None
    response_time_threshold: Optional[float] = None
    error_rate_threshold: Optional[float] = None
    performance_score_threshold: Optional[float] = None


class ChannelSettings(BaseModel):
    email_address: Optional[str] = None
    phone_number: Optional[str] = None
    slack_channel: Optional[str] = None
    slack_webhook_url: Optional[str] = None
    webhook_url: Optional[str] = None


class EscalationLevel(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    level: int = Field(..., ge=1)
    delay_minutes: float = Field(..., ge=0)
    channels: List[NotificationChannelType] = Field(default_factory=list)
    recipients: List[str] = Field(default_factory=list)


class NotificationRule(BaseModel):
    """Alert routing rule."""
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: str = Field(default_factory=lambda: f"rule_{uuid.uuid4().hex[:12]}")
    organization_id: str
    name: str

    # Scope (None = organization-wide)
    webhook_id: Optional[str] = None
    element_id: Optional[str] = None

    trigger_conditions: TriggerConditions = Field(default_factory=TriggerConditions)

    # Channels
    channels: List[NotificationChannelType] = Field(default_factory=lambda: [NotificationChannelType.IN_APP])
    channel_settings: ChannelSettings = Field(default_factory=ChannelSettings)

    is_enabled: bool = True

    # Cooldown (prevent spam)
    cooldown_minutes: float = 15

    escalation_levels: List[EscalationLevel] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("channels")
    @classmethod
    def dedupe_channels(cls, v):
        seen = []
        for channel in v:
            if channel not in seen:
                seen.append(channel)
        return seen

    @field_validator("escalation_levels")
    @classmethod
    def order_escalation_levels(cls, v):
        return sorted(v, key=lambda lvl: lvl.level)


class NotificationHistory(BaseModel):
    """Append-only record of one dispatch."""
    model_config = ConfigDict(use_enum_values=True, validate_default=True, frozen=True)

    id: str = Field(default_factory=lambda: f"ntf_{uuid.uuid4().hex[:12]}")
    organization_id: str
    rule_id: Optional[str] = None
    webhook_id: Optional[str] = None
    alert_id: Optional[str] = None
    alert_type: Optional[str] = None
    escalation_level: int = 0

    message: str
    channels_attempted: List[str] = Field(default_factory=list)
    channels_sent: List[str] = Field(default_factory=list)
    delivery_status: Dict[str, DeliveryStatus] = Field(default_factory=dict)
    delivery_errors: Dict[str, str] = Field(default_factory=dict)

    triggered_at: datetime = Field(default_factory=utc_now)
