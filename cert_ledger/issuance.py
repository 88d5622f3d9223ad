"""
cert_ledger.issuance
--------------------
Issue certificates on chain and mirror them into the local ledger.

Both workflows validate and check for duplicates before touching the
network, submit exactly one transaction, wait for it to confirm, and only
then record what was issued. Failures never escape ``run``: they come back
as an outcome with a status line for the user. Once a transaction confirms
the outcome is a success even if the local copy could not be written.
"""

import time
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from cert_ledger.config import MAX_BATCH_ROWS
from cert_ledger.contracts import ZERO_ADDRESS, is_valid_address
from cert_ledger.errors import (
    DuplicateCertificate,
    InvalidAddress,
    IssuanceCancelled,
    MissingField,
    NothingToIssue,
    UploadError,
)
from cert_ledger.links import gateway_url, tx_url
from cert_ledger.models import CertificateRow, IssuedRecord

logger = logging.getLogger(__name__)

NOT_SAVED = "⚠ Issued on chain, but the local copy was not saved to the ledger"


class IssuanceState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    UPLOADING = "uploading"
    DUPLICATE_CHECK = "duplicate_check"
    AWAITING_SIGNATURE = "awaiting_signature"
    SUBMITTING = "submitting"
    CONFIRMING = "confirming"
    RECORDED = "recorded"
    ERRORED = "errored"


def check_required(row: CertificateRow) -> None:
    for name in ("name", "course"):
        if not getattr(row, name):
            raise MissingField(name)


def destination_for(row: CertificateRow) -> str:
    """The wallet the certificate is bound to, or the zero address for none."""
    if not row.wallet:
        return ZERO_ADDRESS
    if not is_valid_address(row.wallet):
        raise InvalidAddress(row.wallet)
    return row.wallet


@dataclass
class IssuanceOutcome:
    ok: bool
    status: str
    state: IssuanceState
    record: Optional[IssuedRecord] = None
    tx_id: Optional[str] = None
    error: Optional[Exception] = None
    saved: bool = True


class _Workflow:
    def __init__(self, gateway, ledger, uploader=None, clock: Callable[[], float] = time.time,
                 ipfs_gateway: str = "https://ipfs.io/ipfs",
                 explorer: str = "https://testnet.explorer.perawallet.app"):
        self.gateway = gateway
        self.ledger = ledger
        self.uploader = uploader
        self.clock = clock
        self.ipfs_gateway = ipfs_gateway
        self.explorer = explorer
        self.state = IssuanceState.IDLE
        self.history: List[IssuanceState] = []

    def _enter(self, state: IssuanceState) -> None:
        self.state = state
        self.history.append(state)
        logger.debug(f"{type(self).__name__} -> {state.value}")

    @staticmethod
    def _check_cancelled(cancel) -> None:
        if cancel is not None and cancel.is_set():
            raise IssuanceCancelled("Issuance cancelled")

    def _upload(self, row: CertificateRow) -> str:
        if self.uploader is None:
            raise UploadError("No upload service configured")
        return self.uploader.upload(row.asset, row.asset_name)

    def _confirm(self, contract, tx_id: str, cancel) -> int:
        self._enter(IssuanceState.CONFIRMING)
        self._check_cancelled(cancel)
        return contract.wait_for_confirmation(tx_id)

    def _record(self, record: IssuedRecord) -> bool:
        """Mirror a confirmed record locally; report whether it was kept."""
        try:
            # Another process may have written the same cid while we waited on the chain
            if self.ledger.exists(record.cid):
                logger.warning(f"{record.cid} appeared in the local ledger during issuance; replacing it")
            self.ledger.upsert(record)
            saved = self.ledger.exists(record.cid)
        except Exception as e:
            logger.warning(f"{record.cid} is on chain in {record.tx_hash} but the local ledger write failed: {e}")
            return False
        if not saved:
            logger.warning(f"{record.cid} is on chain in {record.tx_hash} but was not kept in the local ledger")
        return saved


class IssuanceWorkflow(_Workflow):
    """Issue a single certificate in one transaction."""

    def run(self, row: CertificateRow, cancel=None) -> IssuanceOutcome:
        self.history = []
        try:
            record, tx_id, saved = self.issue(row, cancel)
        except Exception as e:
            self._enter(IssuanceState.ERRORED)
            logger.error(f"Error issuing certificate: {e}")
            return IssuanceOutcome(
                ok=False,
                status=f"Error issuing certificate: {e}",
                state=IssuanceState.ERRORED,
                error=e,
            )

        status = "\n".join([
            "✅ Certificate issued successfully!",
            f"CID: {record.cid}",
            f"Transaction: {tx_url(tx_id, self.explorer)}",
            f"Preview: {gateway_url(record.image_cid, self.ipfs_gateway)}",
        ])
        if not saved:
            status += "\n" + NOT_SAVED
        self._enter(IssuanceState.IDLE)
        return IssuanceOutcome(ok=True, status=status, state=IssuanceState.RECORDED,
                               record=record, tx_id=tx_id, saved=saved)

    def issue(self, row: CertificateRow, cancel=None):
        self._enter(IssuanceState.VALIDATING)
        row = row.cleaned()
        check_required(row)
        destination = destination_for(row)

        cid = row.cid
        if not cid and row.asset is not None:
            self._enter(IssuanceState.UPLOADING)
            self._check_cancelled(cancel)
            cid = self._upload(row)
        if not cid:
            raise MissingField("cid")

        self._enter(IssuanceState.DUPLICATE_CHECK)
        if self.ledger.exists(cid):
            raise DuplicateCertificate(cid)

        self._enter(IssuanceState.AWAITING_SIGNATURE)
        self._check_cancelled(cancel)
        contract = self.gateway.get_certificate_contract()

        self._enter(IssuanceState.SUBMITTING)
        self._check_cancelled(cancel)
        tx_id = contract.add_certificate(row.name, row.course, row.class_name, cid, destination)

        self._confirm(contract, tx_id, cancel)
        record = IssuedRecord(
            cid=cid,
            name=row.name,
            course=row.course,
            class_name=row.class_name,
            image_cid=cid,
            tx_hash=tx_id,
            issued_at=int(self.clock()),
            revoked=False,
        )
        saved = self._record(record)
        self._enter(IssuanceState.RECORDED)
        return record, tx_id, saved


@dataclass
class RowResult:
    index: int
    row: CertificateRow
    cid: str = ""
    destination: str = ZERO_ADDRESS
    error: Optional[str] = None
    issued: bool = False

    @property
    def eligible(self) -> bool:
        return self.error is None


@dataclass
class BatchOutcome:
    ok: bool
    status: str
    state: IssuanceState
    rows: List[RowResult] = field(default_factory=list)
    tx_id: Optional[str] = None
    error: Optional[Exception] = None
    saved: bool = True

    @property
    def issued(self) -> List[RowResult]:
        return [r for r in self.rows if r.issued]


class BatchIssuanceWorkflow(_Workflow):
    """
    Issue many certificates with one signature and one confirmation wait.

    Rows that fail validation, upload or the duplicate check are dropped
    from the batch with an inline error instead of aborting it. A cid that
    appears on more than one row disqualifies every row carrying it.
    """

    def run(self, rows: List[CertificateRow], cancel=None) -> BatchOutcome:
        self.history = []
        results: List[RowResult] = []
        try:
            tx_id, saved = self.issue(rows, results, cancel)
        except Exception as e:
            self._enter(IssuanceState.ERRORED)
            logger.error(f"Bulk issue error: {e}")
            return BatchOutcome(ok=False, status=str(e), state=IssuanceState.ERRORED,
                                rows=results, error=e)

        issued = [r for r in results if r.issued]
        status = f"✅ Issued {len(issued)} certificates in ONE transaction: {tx_url(tx_id, self.explorer)}"
        if not saved:
            status += "\n" + NOT_SAVED
        self._enter(IssuanceState.IDLE)
        return BatchOutcome(
            ok=True,
            status=status,
            state=IssuanceState.RECORDED,
            rows=results,
            tx_id=tx_id,
            saved=saved,
        )

    def preflight(self, rows: List[CertificateRow], results: List[RowResult], cancel=None) -> List[RowResult]:
        """Fill ``results`` with one entry per row; return the eligible ones."""
        self._enter(IssuanceState.VALIDATING)
        if len(rows) > MAX_BATCH_ROWS:
            raise ValueError(f"For safety, maximum {MAX_BATCH_ROWS} rows at once")

        for index, raw in enumerate(rows):
            row = raw.cleaned()
            result = RowResult(index=index, row=row, cid=row.cid)
            results.append(result)
            try:
                check_required(row)
                result.destination = destination_for(row)
            except (MissingField, InvalidAddress) as e:
                result.error = f"❗ {e}. Skipping this row."

        pending = [r for r in results if r.eligible and not r.cid and r.row.asset is not None]
        if pending:
            self._enter(IssuanceState.UPLOADING)
            for result in pending:
                self._check_cancelled(cancel)
                try:
                    result.cid = self._upload(result.row)
                except UploadError as e:
                    result.error = f"❗ {e}"

        for result in results:
            if result.eligible and not result.cid:
                result.error = "❗ Missing certificate CID. Skipping this row."

        self._enter(IssuanceState.DUPLICATE_CHECK)
        counts = Counter(r.cid for r in results if r.cid)
        for result in results:
            if not result.eligible:
                continue
            if counts[result.cid] > 1:
                result.error = "❗ This CID appears in another row. Duplicate certificate is not allowed."
            elif self.ledger.exists(result.cid):
                result.error = "❗ This CID is already recorded in local database. Skipping this row."

        return [r for r in results if r.eligible]

    def issue(self, rows: List[CertificateRow], results: List[RowResult], cancel=None) -> str:
        eligible = self.preflight(rows, results, cancel)
        if not eligible:
            raise NothingToIssue(
                "No valid rows to issue (all had missing fields, invalid wallets or duplicate CIDs)."
            )

        self._enter(IssuanceState.AWAITING_SIGNATURE)
        self._check_cancelled(cancel)
        contract = self.gateway.get_certificate_contract()

        self._enter(IssuanceState.SUBMITTING)
        self._check_cancelled(cancel)
        logger.info(f"Sending 1 transaction for {len(eligible)} certificates")
        tx_id = contract.add_certificates(
            [r.row.name for r in eligible],
            [r.row.course for r in eligible],
            [r.row.class_name for r in eligible],
            [r.cid for r in eligible],
            [r.destination for r in eligible],
        )

        self._confirm(contract, tx_id, cancel)
        issued_at = int(self.clock())
        saved = True
        for result in eligible:
            saved &= self._record(IssuedRecord(
                cid=result.cid,
                name=result.row.name,
                course=result.row.course,
                class_name=result.row.class_name,
                image_cid=result.cid,
                tx_hash=tx_id,
                issued_at=issued_at,
                revoked=False,
            ))
            result.issued = True
        self._enter(IssuanceState.RECORDED)
        return tx_id, saved
