import logging
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from ..config import Config
from ..errors import NotFoundError, UpstreamError, ValidationError
from ..models import Evidence, Report, ReportStatus, ReportType, StatusUpdate
from .media import StagedFile
from .proximity import parse_finite
from .tracking import generate_tracking_number

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("type", "description", "location", "latitude", "longitude")
UPDATABLE_STATUSES = {ReportStatus.PROCESSING, ReportStatus.INVESTIGATING, ReportStatus.RESOLVED}
SUBMITTED_COMMENT = "Report submitted successfully"


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _optional(value) -> Optional[str]:
    if _blank(value):
        return None
    return str(value).strip()


def is_tracking_number_conflict(exc: IntegrityError) -> bool:
    # sqlite: "UNIQUE constraint failed: report.tracking_number",
    # postgres: "... unique constraint \"ix_report_tracking_number\""
    return "tracking_number" in str(exc.orig)


def parse_report_status(value) -> ReportStatus:
    try:
        return ReportStatus(value)
    except ValueError:
        raise ValidationError("Invalid status value") from None


class ReportService:
    """Create, look up and advance citizen reports.

    The uploader is any object with ``upload(staged) -> url``.  Evidence uploads
    are best effort: a failing file is logged and skipped, the report is still
    created.
    """

    def __init__(
        self,
        session: Session,
        uploader,
        max_files: int = Config.MAX_EVIDENCE_FILES,
        attempts: int = Config.TRACKING_NUMBER_ATTEMPTS,
        tracking_number_factory: Callable[[], str] = generate_tracking_number,
    ):
        self.session = session
        self.uploader = uploader
        self.max_files = max_files
        self.attempts = attempts
        self.tracking_number_factory = tracking_number_factory

    def submit(self, data: Mapping[str, Optional[str]], files: List[StagedFile]) -> Tuple[Report, int]:
        """Validate, upload evidence and persist a new report.

        Returns the stored report and the number of files that could not be
        uploaded.  Staged files are removed whatever happens.
        """
        try:
            fields = self._validate(data, files)
            evidence, skipped = self._upload_evidence(files)
            report = self._create(fields, evidence)
        finally:
            for staged in files:
                staged.discard()
        logger.info(
            "Report %s created with %d evidence file(s), %d skipped",
            report.tracking_number, len(evidence), skipped,
        )
        return report, skipped

    def _validate(self, data, files) -> Dict[str, object]:
        if any(_blank(data.get(name)) for name in REQUIRED_FIELDS):
            raise ValidationError("Missing required fields.")
        try:
            report_type = ReportType(str(data["type"]).strip())
        except ValueError:
            raise ValidationError("Invalid report type") from None
        try:
            latitude = parse_finite(data["latitude"], "latitude")
            longitude = parse_finite(data["longitude"], "longitude")
        except ValidationError:
            raise ValidationError("Invalid latitude or longitude") from None
        if len(files) > self.max_files:
            raise ValidationError(f"At most {self.max_files} evidence files are allowed.")
        return {
            "type": report_type,
            "description": str(data["description"]).strip(),
            "location": str(data["location"]).strip(),
            "latitude": latitude,
            "longitude": longitude,
            "detailed_address": _optional(data.get("detailedAddress")),
            "contact_email": _optional(data.get("contactEmail")),
            "contact_phone": _optional(data.get("contactPhone")),
        }

    def _upload_evidence(self, files: List[StagedFile]) -> Tuple[List[Dict[str, Optional[str]]], int]:
        uploaded = []
        skipped = 0
        for staged in files:
            try:
                url = self.uploader.upload(staged)
            except Exception:
                logger.exception("Evidence upload failed for %s, skipping", staged.filename)
                skipped += 1
                continue
            uploaded.append({"file_url": url, "file_type": staged.content_type})
        return uploaded, skipped

    def _create(self, fields, evidence) -> Report:
        for attempt in range(1, self.attempts + 1):
            tracking_number = self.tracking_number_factory()
            report = Report(
                tracking_number=tracking_number,
                status=ReportStatus.SUBMITTED,
                evidence=[Evidence(**item) for item in evidence],
                status_updates=[StatusUpdate(status=ReportStatus.SUBMITTED, comment=SUBMITTED_COMMENT)],
                **fields,
            )
            self.session.add(report)
            try:
                self.session.commit()
            except IntegrityError as exc:
                self.session.rollback()
                if not is_tracking_number_conflict(exc):
                    logger.error("Failed to store report: %s", exc)
                    raise UpstreamError("Failed to create report") from exc
                logger.warning(
                    "Tracking number %s already in use (attempt %d/%d)",
                    tracking_number, attempt, self.attempts,
                )
                continue
            except SQLAlchemyError as exc:
                self.session.rollback()
                logger.error("Failed to store report: %s", exc)
                raise UpstreamError("Failed to create report") from exc
            self.session.refresh(report)
            return report
        raise UpstreamError("Failed to create report: no free tracking number")

    def get_by_tracking_number(self, tracking_number: str) -> Report:
        report = self.session.exec(
            select(Report).where(Report.tracking_number == tracking_number)
        ).first()
        if report is None:
            raise NotFoundError("Report not found")
        return report

    def evidence(self, report: Report) -> List[Evidence]:
        return list(self.session.exec(
            select(Evidence).where(Evidence.report_id == report.id).order_by(Evidence.id)
        ).all())

    def history(self, report: Report) -> List[StatusUpdate]:
        """Status updates of ``report``, most recent first."""
        return list(self.session.exec(
            select(StatusUpdate)
            .where(StatusUpdate.report_id == report.id)
            .order_by(StatusUpdate.created_at.desc(), StatusUpdate.id.desc())
        ).all())

    def update_status(self, tracking_number: str, status, comment: Optional[str] = None) -> Tuple[Report, StatusUpdate]:
        new_status = parse_report_status(status)
        if new_status not in UPDATABLE_STATUSES:
            raise ValidationError("Invalid status value")
        report = self.get_by_tracking_number(tracking_number)
        prev = report.status
        report.status = new_status
        update = StatusUpdate(report_id=report.id, status=new_status, comment=_optional(comment))
        self.session.add(report)
        self.session.add(update)
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Failed to update report %s: %s", tracking_number, exc)
            raise UpstreamError("Failed to update report status") from exc
        self.session.refresh(report)
        self.session.refresh(update)
        logger.info("Report %s: %s -> %s", tracking_number, prev.value, new_status.value)
        return report, update

    def list_all(self, status=None) -> List[Report]:
        query = select(Report)
        if status:
            query = query.where(Report.status == parse_report_status(status))
        query = query.order_by(Report.created_at.desc(), Report.id.desc())
        return list(self.session.exec(query).all())
