"""Request bodies and JSON shapes of the public API (camelCase on the wire)."""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from pydantic import BaseModel

from .models import Emergency, Evidence, Report, StatusUpdate


class ReportStatusIn(BaseModel):
    status: Optional[str] = None
    comment: Optional[str] = None


class EmergencyIn(BaseModel):
    description: Optional[str] = None


class EmergencyStatusIn(BaseModel):
    status: Optional[str] = None


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    # SQLite hands timestamps back without their offset; they are stored in UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def evidence_out(item: Evidence) -> Dict[str, Any]:
    return {
        "id": item.id,
        "reportId": item.report_id,
        "fileUrl": item.file_url,
        "fileType": item.file_type,
        "createdAt": _iso(item.created_at),
    }


def status_update_out(update: StatusUpdate) -> Dict[str, Any]:
    return {
        "id": update.id,
        "reportId": update.report_id,
        "status": update.status.value,
        "comment": update.comment,
        "createdAt": _iso(update.created_at),
    }


def report_out(
    report: Report,
    evidence: Optional[Iterable[Evidence]] = None,
    status_updates: Optional[Iterable[StatusUpdate]] = None,
    distance: Optional[float] = None,
) -> Dict[str, Any]:
    data = {
        "id": report.id,
        "trackingNumber": report.tracking_number,
        "type": report.type.value,
        "description": report.description,
        "location": report.location,
        "latitude": report.latitude,
        "longitude": report.longitude,
        "detailedAddress": report.detailed_address,
        "contactEmail": report.contact_email,
        "contactPhone": report.contact_phone,
        "status": report.status.value,
        "createdAt": _iso(report.created_at),
    }
    if evidence is not None:
        data["evidence"] = [evidence_out(e) for e in evidence]
    if status_updates is not None:
        data["statusUpdates"] = [status_update_out(u) for u in status_updates]
    if distance is not None:
        data["distance"] = distance
    return data


def emergency_out(emergency: Emergency) -> Dict[str, Any]:
    return {
        "id": emergency.id,
        "description": emergency.description,
        "status": emergency.status.value,
        "createdAt": _iso(emergency.created_at),
    }


def ok(data: Any) -> Dict[str, Any]:
    return {"success": True, "data": data}


def failure(message: str, error: Optional[str] = None) -> Dict[str, Any]:
    body = {"success": False, "message": message}
    if error is not None:
        body["error"] = error
    return body
