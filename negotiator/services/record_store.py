"""
Persistent negotiation record access.

WHAT: Read/write the durable fields the round manager depends on
WHY: The record lives in the CRUD layer's database; the engine sees it only through this seam
HOW: NegotiationRecordStore protocol plus a SQLAlchemy implementation over negotiation_records
"""

from typing import Protocol
from pydantic import BaseModel

from ..core.database import get_db
from ..core.models import NegotiationRecord, NegotiationStatus
from ..utils.logger import get_logger

logger = get_logger(__name__)


class NegotiationRecordData(BaseModel):
    """Detached snapshot of a negotiation record."""

    negotiation_id: str
    buyer: str = ""
    seller: str = ""
    product: str = ""
    status: str = NegotiationStatus.OPENING.value
    rounds: int = 0
    max_rounds: int = 10


class NegotiationRecordStore(Protocol):
    """What the round manager needs from the persistent record."""

    def get_record(self, negotiation_id: str) -> NegotiationRecordData | None:
        ...

    def update_rounds(self, negotiation_id: str, rounds: int) -> None:
        ...

    def update_max_rounds(self, negotiation_id: str, max_rounds: int) -> None:
        ...

    def update_status(self, negotiation_id: str, status: str) -> None:
        ...


class SqlNegotiationRecordStore:
    """NegotiationRecordStore backed by the negotiation_records table."""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory

    def create_record(
        self,
        negotiation_id: str,
        *,
        buyer: str = "",
        seller: str = "",
        product: str = "",
        max_rounds: int = 10
    ) -> NegotiationRecordData:
        with get_db(self.session_factory) as db:
            record = NegotiationRecord(
                id=negotiation_id,
                buyer=buyer,
                seller=seller,
                product=product,
                max_rounds=max_rounds,
                rounds=0,
                status=NegotiationStatus.OPENING,
            )
            db.add(record)
            db.flush()
            logger.info(f"Created negotiation record {negotiation_id}")
            return self._to_data(record)

    def get_record(self, negotiation_id: str) -> NegotiationRecordData | None:
        with get_db(self.session_factory) as db:
            record = db.get(NegotiationRecord, negotiation_id)
            return self._to_data(record) if record else None

    def update_rounds(self, negotiation_id: str, rounds: int) -> None:
        self._update(negotiation_id, rounds=rounds)

    def update_max_rounds(self, negotiation_id: str, max_rounds: int) -> None:
        self._update(negotiation_id, max_rounds=max_rounds)

    def update_status(self, negotiation_id: str, status: str) -> None:
        self._update(negotiation_id, status=NegotiationStatus(status))

    def _update(self, negotiation_id: str, **fields) -> None:
        with get_db(self.session_factory) as db:
            record = db.get(NegotiationRecord, negotiation_id)
            if record is None:
                logger.warning(f"Negotiation record {negotiation_id} not found, skipping update {fields}")
                return
            for key, value in fields.items():
                setattr(record, key, value)
            logger.debug(f"Updated negotiation record {negotiation_id}: {fields}")

    @staticmethod
    def _to_data(record: NegotiationRecord) -> NegotiationRecordData:
        status = record.status.value if isinstance(record.status, NegotiationStatus) else str(record.status)
        return NegotiationRecordData(
            negotiation_id=record.id,
            buyer=record.buyer or "",
            seller=record.seller or "",
            product=record.product or "",
            status=status,
            rounds=record.rounds or 0,
            max_rounds=record.max_rounds,
        )
