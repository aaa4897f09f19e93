from enum import Enum
from typing import List, Optional
from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReportType(str, Enum):
    THEFT = "THEFT"
    VANDALISM = "VANDALISM"
    ASSAULT = "ASSAULT"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    OTHER = "OTHER"


class ReportStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    PROCESSING = "PROCESSING"
    INVESTIGATING = "INVESTIGATING"
    RESOLVED = "RESOLVED"


class EmergencyStatus(str, Enum):
    PENDING = "PENDING"
    RESPONDED = "RESPONDED"
    RESOLVED = "RESOLVED"


class Report(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tracking_number: str = Field(index=True, unique=True)
    type: ReportType
    description: str
    location: str
    latitude: float
    longitude: float
    detailed_address: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    status: ReportStatus = Field(default=ReportStatus.SUBMITTED, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=True)

    evidence: List["Evidence"] = Relationship(
        back_populates="report", sa_relationship_kwargs={"order_by": "Evidence.id"}
    )
    status_updates: List["StatusUpdate"] = Relationship(back_populates="report")


class Evidence(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    report_id: Optional[int] = Field(default=None, foreign_key="report.id", index=True)
    file_url: str
    file_type: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

    report: Optional[Report] = Relationship(back_populates="evidence")


class StatusUpdate(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    report_id: Optional[int] = Field(default=None, foreign_key="report.id", index=True)
    status: ReportStatus
    comment: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

    report: Optional[Report] = Relationship(back_populates="status_updates")


class Emergency(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    description: str
    status: EmergencyStatus = Field(default=EmergencyStatus.PENDING, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=True)
