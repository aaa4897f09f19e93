import logging
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from ..errors import NotFoundError, UpstreamError, ValidationError
from ..models import Emergency, EmergencyStatus

logger = logging.getLogger(__name__)

# current status -> statuses it may move to
TRANSITIONS = {
    EmergencyStatus.PENDING: {EmergencyStatus.RESPONDED, EmergencyStatus.RESOLVED},
    EmergencyStatus.RESPONDED: {EmergencyStatus.RESPONDED, EmergencyStatus.RESOLVED},
    EmergencyStatus.RESOLVED: {EmergencyStatus.RESOLVED},
}


def parse_emergency_status(value) -> EmergencyStatus:
    try:
        return EmergencyStatus(value)
    except ValueError:
        raise ValidationError("Invalid status value") from None


class EmergencyService:
    def __init__(self, session: Session):
        self.session = session

    def _commit(self, message: str):
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("%s: %s", message, exc)
            raise UpstreamError(message) from exc

    def report(self, description) -> Emergency:
        if description is None or not str(description).strip():
            raise ValidationError("Description is required for emergency reports.")
        emergency = Emergency(description=str(description).strip(), status=EmergencyStatus.PENDING)
        self.session.add(emergency)
        self._commit("Failed to create emergency report")
        self.session.refresh(emergency)
        logger.info("Emergency %s reported", emergency.id)
        return emergency

    def update_status(self, emergency_id: int, status) -> Emergency:
        new_status = parse_emergency_status(status)
        if new_status == EmergencyStatus.PENDING:
            raise ValidationError("Invalid status value")
        emergency = self.session.get(Emergency, emergency_id)
        if emergency is None:
            raise NotFoundError("Emergency not found")
        prev = emergency.status
        if new_status not in TRANSITIONS[prev]:
            raise ValidationError(f"Cannot change status from {prev.value} to {new_status.value}")
        emergency.status = new_status
        self.session.add(emergency)
        self._commit("Failed to update emergency status")
        self.session.refresh(emergency)
        logger.info("Emergency %s: %s -> %s", emergency_id, prev.value, new_status.value)
        return emergency

    def list_all(self, status=None) -> List[Emergency]:
        query = select(Emergency)
        if status:
            query = query.where(Emergency.status == parse_emergency_status(status))
        query = query.order_by(Emergency.created_at.desc(), Emergency.id.desc())
        return list(self.session.exec(query).all())
