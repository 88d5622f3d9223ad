import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from cert_ledger.errors import MissingField
from cert_ledger.models import IssuedRecord, OnChainCertificate

logger = logging.getLogger(__name__)


class Classification(str, Enum):
    NOT_FOUND = "not_found"
    REVOKED = "revoked"
    VALID = "valid"


@dataclass
class Verification:
    cid: str
    classification: Classification
    # False means "based on records issued from this machine", not proof of chain state
    authoritative: bool
    record: Optional[IssuedRecord] = None
    on_chain: Optional[OnChainCertificate] = None

    @property
    def source(self) -> str:
        return "on-chain" if self.authoritative else "local ledger"


def _clean(cid: str) -> str:
    cid = (cid or "").strip()
    if not cid:
        raise MissingField("cid")
    return cid


def verify_local(ledger, cid: str) -> Verification:
    cid = _clean(cid)
    record = ledger.get(cid)
    if record is None:
        classification = Classification.NOT_FOUND
    elif record.revoked:
        classification = Classification.REVOKED
    else:
        classification = Classification.VALID
    return Verification(cid=cid, classification=classification, authoritative=False, record=record)


def verify_on_chain(gateway, cid: str) -> Verification:
    cid = _clean(cid)
    contract = gateway.get_certificate_contract()
    found = contract.verify_by_cid(cid)
    classification = Classification.VALID if found else Classification.NOT_FOUND
    logger.info(f"On-chain verification of {cid}: {classification.value}")
    return Verification(cid=cid, classification=classification, authoritative=True, on_chain=found)


class Verifier:
    """Runs whichever verification the deployment is configured for."""

    MODES = ("chain", "local")

    def __init__(self, mode: str, ledger=None, gateway=None):
        if mode not in self.MODES:
            raise ValueError(f"Unknown verify mode: {mode}")
        self.mode = mode
        self.ledger = ledger
        self.gateway = gateway

    def verify(self, cid: str) -> Verification:
        if self.mode == "local":
            return verify_local(self.ledger, cid)
        return verify_on_chain(self.gateway, cid)
