"""
Event and status models shared by the sensors, aggregator and controller.

EventRecord is the only mutable model and only one field of it may change
(alert_sent, false → true). Status snapshots are frozen values and can be
handed to any observer thread without copying.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple


class EventCategory(Enum):
    INPUT = "Input"
    LOGIN = "Login"
    CAMERA = "Camera"
    SESSION = "Session"
    SYSTEM = "System"
    BACKGROUND_MONITORING = "BackgroundMonitoring"
    USB = "USB"


class Severity(IntEnum):
    INFO = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class CorrelationRole(Enum):
    LOGIN_ATTEMPT = "login"
    SESSION_CHANGE = "session"
    USER_INPUT = "input"


@dataclass(frozen=True)
class CategoryPolicy:
    critical: bool                 # must run for baseline coverage
    runs_while_locked: bool        # host OS allows capture on the lock screen
    correlation: Optional[CorrelationRole] = None


# Every category must appear here; tests enforce it.
CATEGORY_POLICY = {
    EventCategory.INPUT: CategoryPolicy(True, True, CorrelationRole.USER_INPUT),
    EventCategory.LOGIN: CategoryPolicy(True, True, CorrelationRole.LOGIN_ATTEMPT),
    EventCategory.SESSION: CategoryPolicy(True, True, CorrelationRole.SESSION_CHANGE),
    EventCategory.CAMERA: CategoryPolicy(False, False),
    EventCategory.SYSTEM: CategoryPolicy(False, True),
    EventCategory.BACKGROUND_MONITORING: CategoryPolicy(False, True),
    EventCategory.USB: CategoryPolicy(False, True),
}

CRITICAL_CATEGORIES = tuple(c for c, p in CATEGORY_POLICY.items() if p.critical)


class SessionState(Enum):
    UNLOCKED = "Unlocked"
    LOCKED = "Locked"
    REMOTE_CONNECT = "RemoteConnect"
    REMOTE_DISCONNECT = "RemoteDisconnect"
    LOGON = "Logon"
    LOGOFF = "Logoff"


# ─── EventRecord ─────────────────────────────────────────────────

_FROZEN_FIELDS = ("category", "severity")


@dataclass(eq=False)
class EventRecord:
    category: EventCategory
    description: str
    severity: Severity = Severity.INFO
    source: str = ""
    timestamp: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    alert_sent: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.category, EventCategory):
            raise TypeError(f"category must be EventCategory, got {type(self.category).__name__}")
        if not isinstance(self.severity, Severity):
            raise TypeError(f"severity must be Severity, got {type(self.severity).__name__}")
        if not isinstance(self.description, str) or not self.description.strip():
            raise ValueError("description must be a non-empty string")
        if isinstance(self.timestamp, bool) or not isinstance(self.timestamp, (int, float)):
            raise TypeError("timestamp must be a number (epoch seconds)")
        object.__setattr__(self, "_initialized", True)

    def __setattr__(self, name, value):
        if getattr(self, "_initialized", False):
            if name in _FROZEN_FIELDS:
                raise AttributeError(f"EventRecord.{name} is immutable")
            if name == "alert_sent" and self.alert_sent and not value:
                raise AttributeError("EventRecord.alert_sent cannot be reset")
        object.__setattr__(self, name, value)

    def mark_alert_sent(self):
        self.alert_sent = True

    def age(self, now: float) -> float:
        return now - self.timestamp

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "category": self.category.value,
            "description": self.description,
            "severity": self.severity.name,
            "source": self.source,
            "alertSent": self.alert_sent,
            "metadata": self.metadata,
        }


# ─── Input summary (debouncer output) ────────────────────────────

@dataclass(frozen=True)
class InputActivitySummary:
    start_time: float
    end_time: float
    keystroke_count: int
    mouse_click_count: int
    mouse_movement_distance: float
    typing_speed: float
    preceding_idle_seconds: float
    severity: Severity
    source: str = "InputMonitor"

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def has_activity(self) -> bool:
        return (self.keystroke_count > 0
                or self.mouse_click_count > 0
                or self.mouse_movement_distance > 0)

    @property
    def description(self) -> str:
        return (f"Input detected: {self.keystroke_count} keystrokes, "
                f"{self.mouse_click_count} clicks, "
                f"{self.mouse_movement_distance:.1f}px movement")

    def to_record(self) -> EventRecord:
        return EventRecord(
            category=EventCategory.INPUT,
            description=self.description,
            severity=self.severity,
            source=self.source,
            timestamp=self.end_time,
            metadata={
                "keystrokeCount": self.keystroke_count,
                "mouseClickCount": self.mouse_click_count,
                "mouseMovementDistance": round(self.mouse_movement_distance, 1),
                "typingSpeed": round(self.typing_speed, 2),
                "precedingIdleSec": round(self.preceding_idle_seconds, 1),
                "durationSec": round(self.duration, 1),
            },
        )


# ─── Session transitions ─────────────────────────────────────────

@dataclass(frozen=True)
class SessionTransition:
    new_state: SessionState
    timestamp: float = field(default_factory=time.time)
    context: str = ""


# ─── Snapshots ───────────────────────────────────────────────────

@dataclass(frozen=True)
class AggregationStats:
    total_recent_events: int
    events_last_5_minutes: int
    events_last_15_minutes: int
    alerts_sent_last_5_minutes: int
    alerts_sent_last_15_minutes: int
    category_breakdown: Mapping[str, int]


@dataclass(frozen=True)
class CoordinatorStatus:
    total_services: int
    running_services: int
    services: Mapping[str, bool]
    coordinating: bool = False

    @property
    def all_running(self) -> bool:
        return self.total_services > 0 and self.running_services == self.total_services


@dataclass(frozen=True)
class BackgroundMonitoringStatus:
    session_state: SessionState
    category_active: Mapping[EventCategory, bool]
    critical_services_active: bool
    background_monitoring_active: bool = False
    inactive_services: Tuple[str, ...] = ()
    last_updated: float = field(default_factory=time.time)
    session_locked: Optional[bool] = None   # None → derived from session_state

    def __post_init__(self):
        if self.session_locked is None:
            object.__setattr__(self, "session_locked", self.session_state is SessionState.LOCKED)
        object.__setattr__(self, "category_active", MappingProxyType(dict(self.category_active)))

    def is_active(self, category: EventCategory) -> bool:
        return self.category_active.get(category, False)

    @property
    def input_active(self) -> bool:
        return self.is_active(EventCategory.INPUT)

    @property
    def camera_active(self) -> bool:
        return self.is_active(EventCategory.CAMERA)

    @property
    def session_active(self) -> bool:
        return self.is_active(EventCategory.SESSION)

    @property
    def login_active(self) -> bool:
        return self.is_active(EventCategory.LOGIN)

    @property
    def is_session_locked(self) -> bool:
        return bool(self.session_locked)

    @property
    def active_count(self) -> int:
        return sum(1 for active in self.category_active.values() if active)
