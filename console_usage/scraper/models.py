"""
Data model for scraped usage snapshots and session validation results.

Snapshots are frozen dataclasses: created once per scrape attempt and never
mutated afterwards. ``to_dict`` emits the camelCase wire/file shape used by
the history files and the sync endpoint.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from console_usage.errors import ErrorCategory

SECTION_CURRENT_SESSION = "currentSession"
SECTION_ALL_MODELS = "allModels"
SECTION_SONNET_ONLY = "sonnetOnly"

TOTAL_SECTIONS = 3


def utc_now_iso() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class WindowUsage:
    """Usage of one rate-limit window."""
    resets_in: str
    percentage_used: int

    def to_dict(self) -> Dict[str, Any]:
        return {"resetsIn": self.resets_in, "percentageUsed": self.percentage_used}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WindowUsage":
        return cls(
            resets_in=str(data.get("resetsIn", "")),
            percentage_used=int(data.get("percentageUsed", 0)),
        )


@dataclass(frozen=True)
class WeeklyLimits:
    all_models: WindowUsage
    sonnet_only: WindowUsage

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allModels": self.all_models.to_dict(),
            "sonnetOnly": self.sonnet_only.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WeeklyLimits":
        return cls(
            all_models=WindowUsage.from_dict(data.get("allModels", {})),
            sonnet_only=WindowUsage.from_dict(data.get("sonnetOnly", {})),
        )


EMPTY_WINDOW = WindowUsage(resets_in="", percentage_used=0)


@dataclass(frozen=True)
class UsageSnapshot:
    """
    One scraped view of the Console usage page.

    ``is_partial`` is true iff fewer than all three sections were extracted;
    ``extraction_errors`` is present iff any section failed.
    """
    last_updated: str
    is_partial: bool
    current_session: Optional[WindowUsage] = None
    weekly_limits: Optional[WeeklyLimits] = None
    extraction_errors: Optional[Mapping[str, str]] = None

    def __post_init__(self):
        if self.extraction_errors is not None:
            # Read-only view so downstream consumers cannot mutate the snapshot
            object.__setattr__(
                self, "extraction_errors", MappingProxyType(dict(self.extraction_errors))
            )

    @property
    def sections_extracted(self) -> int:
        return TOTAL_SECTIONS - len(self.extraction_errors or {})

    def to_dict(self, include_errors: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "lastUpdated": self.last_updated,
            "isPartial": self.is_partial,
        }
        if self.current_session is not None:
            data["currentSession"] = self.current_session.to_dict()
        if self.weekly_limits is not None:
            data["weeklyLimits"] = self.weekly_limits.to_dict()
        if include_errors and self.extraction_errors:
            data["extractionErrors"] = dict(self.extraction_errors)
        return data

    def to_sync_payload(self) -> Dict[str, Any]:
        """Body posted to the sync endpoint (no extraction errors)."""
        return self.to_dict(include_errors=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UsageSnapshot":
        current = data.get("currentSession")
        weekly = data.get("weeklyLimits")
        return cls(
            last_updated=str(data.get("lastUpdated", "")),
            is_partial=bool(data.get("isPartial", False)),
            current_session=WindowUsage.from_dict(current) if current else None,
            weekly_limits=WeeklyLimits.from_dict(weekly) if weekly else None,
            extraction_errors=data.get("extractionErrors") or None,
        )


@dataclass(frozen=True)
class RecoveryResult:
    """Outcome of a recovery validation pass."""
    recovered: bool
    action: str  # auto-refreshed | manual-login-required | network-error
    timestamp: str = field(default_factory=utc_now_iso)


RECOVERY_AUTO_REFRESHED = "auto-refreshed"
RECOVERY_MANUAL_LOGIN = "manual-login-required"
RECOVERY_NETWORK_ERROR = "network-error"


@dataclass(frozen=True)
class ValidationResult:
    """
    Result of one session validation call. Never persisted.

    ``category`` is assigned when the failure is detected, so callers do not
    re-derive it from ``reason``.
    """
    valid: bool
    reason: Optional[str] = None
    category: Optional[ErrorCategory] = None
    timestamp: str = field(default_factory=utc_now_iso)
    recovery_result: Optional[RecoveryResult] = None

    @property
    def recovery_attempted(self) -> bool:
        return self.recovery_result is not None
