"""Merchant onboarding domain: application statuses, event mapping and transition rules."""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ApplicationStatus(str, Enum):
    """Canonical merchant application status."""
    CREATED = "created"
    PARTIALLY_SIGNED = "partially_signed"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    INCOMPLETE = "incomplete"
    APPROVED = "approved"
    DECLINED = "declined"


class SubmissionStatus(str, Enum):
    """Where the application sits in the submission pipeline."""
    DRAFT = "draft"
    PENDING_ACCEPTANCE = "pending_acceptance"
    READY_FOR_SUBMISSION = "ready_for_submission"
    SUBMITTED = "submitted"


class UnderwritingStatus(str, Enum):
    """Gateway-side risk review state."""
    IN_REVIEW = "in_review"
    ADDITIONAL_INFO_REQUIRED = "additional_info_required"
    APPROVED = "approved"
    DECLINED = "declined"


class MerchantStatus(str, Enum):
    """Merchant readiness as seen on the organization record."""
    NOT_STARTED = "not_started"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    DECLINED = "declined"


class EventType(str, Enum):
    """Gateway webhook event taxonomy for merchant applications."""
    CREATED = "application.created"
    PARTIALLY_SIGNED = "application.partially_signed"
    SIGNED = "application.signed"
    SUBMITTED = "application.submitted"
    APPROVED = "application.approved"
    DECLINED = "application.declined"
    ADDITIONAL_INFO_REQUIRED = "application.additional_info_required"


# Every ApplicationStatus member must appear here; enforced at import time below.
STATUS_PRIORITY: dict[ApplicationStatus, int] = {
    ApplicationStatus.CREATED: 1,
    ApplicationStatus.PARTIALLY_SIGNED: 2,
    ApplicationStatus.SIGNED: 3,
    ApplicationStatus.INCOMPLETE: 3,
    ApplicationStatus.SUBMITTED: 4,
    ApplicationStatus.APPROVED: 5,
    ApplicationStatus.DECLINED: 5,
}

_missing = set(ApplicationStatus) - set(STATUS_PRIORITY)
if _missing:
    raise RuntimeError(f"STATUS_PRIORITY is missing statuses: {sorted(s.value for s in _missing)}")

TERMINAL_STATUSES = frozenset({ApplicationStatus.APPROVED, ApplicationStatus.DECLINED})

# Statuses from which an explicit submission is refused
SUBMISSION_LOCKED_STATUSES = frozenset(
    {ApplicationStatus.SUBMITTED, ApplicationStatus.APPROVED, ApplicationStatus.DECLINED}
)


@dataclass(frozen=True)
class StatusUpdate:
    """Partial update produced from a webhook event. Unset fields are left untouched."""

    status: Optional[ApplicationStatus] = None
    submission_status: Optional[SubmissionStatus] = None
    underwriting_status: Optional[UnderwritingStatus] = None
    external_account_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return (
            self.status is None
            and self.submission_status is None
            and self.underwriting_status is None
            and self.external_account_id is None
        )

    def as_fields(self) -> dict[str, str]:
        """Column name -> value for every field carried by this update."""
        fields: dict[str, str] = {}
        if self.status is not None:
            fields["status"] = self.status.value
        if self.submission_status is not None:
            fields["submission_status"] = self.submission_status.value
        if self.underwriting_status is not None:
            fields["underwriting_status"] = self.underwriting_status.value
        if self.external_account_id is not None:
            fields["external_account_id"] = self.external_account_id
        return fields


_EVENT_UPDATES: dict[EventType, StatusUpdate] = {
    EventType.CREATED: StatusUpdate(
        status=ApplicationStatus.CREATED,
        submission_status=SubmissionStatus.DRAFT,
    ),
    EventType.PARTIALLY_SIGNED: StatusUpdate(
        status=ApplicationStatus.PARTIALLY_SIGNED,
        submission_status=SubmissionStatus.PENDING_ACCEPTANCE,
    ),
    EventType.SIGNED: StatusUpdate(
        status=ApplicationStatus.SIGNED,
        submission_status=SubmissionStatus.READY_FOR_SUBMISSION,
    ),
    EventType.SUBMITTED: StatusUpdate(
        status=ApplicationStatus.SUBMITTED,
        submission_status=SubmissionStatus.SUBMITTED,
        underwriting_status=UnderwritingStatus.IN_REVIEW,
    ),
    EventType.APPROVED: StatusUpdate(
        status=ApplicationStatus.APPROVED,
        submission_status=SubmissionStatus.SUBMITTED,
        underwriting_status=UnderwritingStatus.APPROVED,
    ),
    EventType.DECLINED: StatusUpdate(
        status=ApplicationStatus.DECLINED,
        submission_status=SubmissionStatus.SUBMITTED,
        underwriting_status=UnderwritingStatus.DECLINED,
    ),
    EventType.ADDITIONAL_INFO_REQUIRED: StatusUpdate(
        status=ApplicationStatus.INCOMPLETE,
        underwriting_status=UnderwritingStatus.ADDITIONAL_INFO_REQUIRED,
    ),
}


def map_event_to_status(event_type: str, application_summary: dict[str, Any]) -> StatusUpdate:
    """
    Translate a gateway event into a canonical partial status update.

    Unknown event types return an empty update; callers treat that as
    "no mapping" and acknowledge the delivery without touching state.
    """
    try:
        event = EventType(event_type)
    except ValueError:
        return StatusUpdate()

    update = _EVENT_UPDATES[event]
    if event is EventType.APPROVED:
        account_id = application_summary.get("accountId")
        if isinstance(account_id, str) and account_id:
            return StatusUpdate(
                status=update.status,
                submission_status=update.submission_status,
                underwriting_status=update.underwriting_status,
                external_account_id=account_id,
            )
    return update


def check_transition(
    current: Optional[ApplicationStatus],
    incoming: ApplicationStatus,
) -> bool:
    """
    Return True when ``incoming`` may overwrite ``current``.

    Forward or same-rank moves are allowed, and ``incomplete`` may step back
    from any non-terminal status. Terminal statuses only accept a redelivery
    of themselves, so ``declined`` never replaces ``approved`` and vice versa,
    and a late ``incomplete`` does not reopen an approved or declined
    application.
    """
    if current is None:
        return True
    if current in TERMINAL_STATUSES:
        return incoming == current
    if incoming == ApplicationStatus.INCOMPLETE:
        return True
    return STATUS_PRIORITY[incoming] >= STATUS_PRIORITY[current]


def parse_status(value: Optional[str]) -> Optional[ApplicationStatus]:
    """Read a stored status string. Unrecognised values rank as absent."""
    if value is None:
        return None
    try:
        return ApplicationStatus(value)
    except ValueError:
        return None
