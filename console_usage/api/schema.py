from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Dict, List, Optional

from console_usage.scraper.models import UsageSnapshot, WeeklyLimits, WindowUsage


class WindowUsagePayload(BaseModel):
    """
    Usage of one rate-limit window, as posted by the scraper.
    """
    model_config = ConfigDict(populate_by_name=True)

    resets_in: str = Field(alias="resetsIn")
    percentage_used: int = Field(alias="percentageUsed", ge=0, le=100)

    def to_window(self) -> WindowUsage:
        return WindowUsage(resets_in=self.resets_in, percentage_used=self.percentage_used)


class WeeklyLimitsPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    all_models: WindowUsagePayload = Field(alias="allModels")
    sonnet_only: WindowUsagePayload = Field(alias="sonnetOnly")


class UsagePayload(BaseModel):
    """
    Body of POST /api/claude/console-usage.
    """
    model_config = ConfigDict(populate_by_name=True)

    last_updated: str = Field(alias="lastUpdated", min_length=1)
    is_partial: bool = Field(default=False, alias="isPartial")
    current_session: Optional[WindowUsagePayload] = Field(default=None, alias="currentSession")
    weekly_limits: Optional[WeeklyLimitsPayload] = Field(default=None, alias="weeklyLimits")
    extraction_errors: Optional[Dict[str, str]] = Field(default=None, alias="extractionErrors")

    @model_validator(mode="after")
    def check_sections(self):
        if self.current_session is None and self.weekly_limits is None:
            raise ValueError("snapshot contains no usage sections")
        if not self.is_partial:
            if self.current_session is None or self.weekly_limits is None:
                raise ValueError("a complete snapshot requires currentSession and weeklyLimits")
            if self.extraction_errors:
                raise ValueError("a complete snapshot cannot carry extractionErrors")
        return self

    def to_snapshot(self) -> UsageSnapshot:
        weekly = None
        if self.weekly_limits is not None:
            weekly = WeeklyLimits(
                all_models=self.weekly_limits.all_models.to_window(),
                sonnet_only=self.weekly_limits.sonnet_only.to_window(),
            )
        return UsageSnapshot(
            last_updated=self.last_updated,
            is_partial=self.is_partial,
            current_session=self.current_session.to_window() if self.current_session else None,
            weekly_limits=weekly,
            extraction_errors=self.extraction_errors or None,
        )


class SyncAck(BaseModel):
    """
    Response to a successful sync.
    """
    success: bool
    message: str
    timestamp: str


class VersionEntry(BaseModel):
    filename: str
    timestamp: str


class HistoryResponse(BaseModel):
    count: int
    versions: List[VersionEntry]
