"""Value transfer primitive used by the mission engine and registry."""

from collections.abc import Iterable
from typing import Protocol

import structlog
from sqlalchemy.orm import Session

from db.enums import PayoutKind
from db.models import Payout
from missionfactory.services._helpers import normalize_address, unix_now

logger = structlog.get_logger(__name__)


class TransferGateway(Protocol):
    """Sends value to an address. Reports failure by returning False, never by raising."""

    def send(
        self, recipient: str, amount: int, mission_id: str | None, kind: PayoutKind
    ) -> bool: ...

    def is_contract(self, address: str) -> bool: ...


class LedgerTransferGateway:
    """Journals every transfer as a ``Payout`` row for the submission layer to execute.

    Addresses listed in ``contract_addresses`` are reported as contracts and are
    refused as recipients of player-facing transfers.
    """

    def __init__(self, session: Session, contract_addresses: Iterable[str] = ()) -> None:
        self.session: Session = session
        self.contract_addresses: frozenset[str] = frozenset(
            normalize_address(a) for a in contract_addresses
        )

    def is_contract(self, address: str) -> bool:
        return normalize_address(address) in self.contract_addresses

    def send(
        self, recipient: str, amount: int, mission_id: str | None, kind: PayoutKind
    ) -> bool:
        recipient = normalize_address(recipient)
        if not recipient or amount < 0:
            logger.warning(
                "Transfer rejected",
                recipient=recipient,
                amount=str(amount),
                mission_id=mission_id,
            )
            return False
        if kind != PayoutKind.WITHDRAWAL and recipient in self.contract_addresses:
            logger.warning("Transfer to contract refused", recipient=recipient, kind=kind.value)
            return False
        if amount == 0:
            return True

        self.session.add(
            Payout(
                mission_id=mission_id,
                recipient=recipient,
                amount=amount,
                kind=kind.value,
                created_at=unix_now(),
            )
        )
        logger.debug(
            "Transfer journaled",
            recipient=recipient,
            amount=str(amount),
            mission_id=mission_id,
            kind=kind.value,
        )
        return True
