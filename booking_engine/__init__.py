from .booking import (
	RESERVATION_STATUSES,
	STATUS_APPROVED,
	STATUS_PENDING,
	STATUS_REJECTED,
	Interval,
	Occurrence,
	Reservation,
	has_time_overlap,
)
from .conflicts import ConflictChecker, ConflictReport
from .errors import (
	BookingError,
	ConflictError,
	EmptyBatch,
	InvalidRange,
	InvalidStatusTransition,
	InvalidWindow,
	NoEnabledDay,
	OutsideFacilityHours,
	OverlapConstraintError,
	RangeTooLarge,
	ReservationNotFound,
	ScheduleCancelled,
	StorageUnavailable,
	ValidationError,
)
from .expander import MAX_EXPANSION_DAYS, expand_occurrences
from .lifecycle import cancel_reservation, change_status
from .recurrence import Daily, DayWindow, NoRepeat, RecurrenceSpec, Weekly, WeeklySchedule
from .scheduler import BookingScheduler, ScheduleRequest, ScheduleResult, default_status_policy
from .storage import InMemoryReservationRepository, ReservationRepository
from .yaml_store import ReservationYamlRepository, YamlNotificationSink

__all__ = [
	"RESERVATION_STATUSES",
	"STATUS_APPROVED",
	"STATUS_PENDING",
	"STATUS_REJECTED",
	"Interval",
	"Occurrence",
	"Reservation",
	"has_time_overlap",
	"ConflictChecker",
	"ConflictReport",
	"BookingError",
	"ConflictError",
	"EmptyBatch",
	"InvalidRange",
	"InvalidStatusTransition",
	"InvalidWindow",
	"NoEnabledDay",
	"OutsideFacilityHours",
	"OverlapConstraintError",
	"RangeTooLarge",
	"ReservationNotFound",
	"ScheduleCancelled",
	"StorageUnavailable",
	"ValidationError",
	"MAX_EXPANSION_DAYS",
	"expand_occurrences",
	"cancel_reservation",
	"change_status",
	"Daily",
	"DayWindow",
	"NoRepeat",
	"RecurrenceSpec",
	"Weekly",
	"WeeklySchedule",
	"BookingScheduler",
	"ScheduleRequest",
	"ScheduleResult",
	"default_status_policy",
	"InMemoryReservationRepository",
	"ReservationRepository",
	"ReservationYamlRepository",
	"YamlNotificationSink",
]
