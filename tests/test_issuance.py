import threading

from cert_ledger.contracts import ZERO_ADDRESS
from cert_ledger.errors import (
    ContractCallError,
    DuplicateCertificate,
    InvalidAddress,
    IssuanceCancelled,
    MissingField,
    NothingToIssue,
    SigningUnavailable,
    UploadError,
)
from cert_ledger.issuance import BatchIssuanceWorkflow, IssuanceState, IssuanceWorkflow
from cert_ledger.models import CertificateRow, IssuedRecord
from cert_ledger.storage import LedgerStore, MemoryStorage

from conftest import STUDENT_ADDRESS, FakeContract, FakeGateway, FakeUploader


def single(gateway, ledger, **kw):
    return IssuanceWorkflow(gateway, ledger, clock=lambda: 1700000000.7, **kw)


def batch(gateway, ledger, **kw):
    return BatchIssuanceWorkflow(gateway, ledger, clock=lambda: 1700000000.7, **kw)


def test_issue_records_after_confirmation(gateway, contract, ledger):
    row = CertificateRow(name=" Ali Raza ", course="Blockchain", class_name="BSCS-8A", cid="Qm1")
    workflow = single(gateway, ledger)
    outcome = workflow.run(row)

    assert outcome.ok
    assert outcome.state == IssuanceState.RECORDED
    assert outcome.tx_id == "TX1"
    assert contract.single_calls == [("Ali Raza", "Blockchain", "BSCS-8A", "Qm1", ZERO_ADDRESS)]
    assert contract.confirmed == ["TX1"]
    assert "Certificate issued successfully" in outcome.status

    rec = ledger.get("Qm1")
    assert rec.tx_hash == "TX1"
    assert rec.issued_at == 1700000000
    assert rec.image_cid == "Qm1"
    assert rec.revoked is False

    assert workflow.state == IssuanceState.IDLE
    assert workflow.history == [
        IssuanceState.VALIDATING,
        IssuanceState.DUPLICATE_CHECK,
        IssuanceState.AWAITING_SIGNATURE,
        IssuanceState.SUBMITTING,
        IssuanceState.CONFIRMING,
        IssuanceState.RECORDED,
        IssuanceState.IDLE,
    ]


def test_issue_passes_student_wallet(gateway, contract, ledger):
    single(gateway, ledger).run(CertificateRow(name="A", course="B", cid="Qm1", wallet=STUDENT_ADDRESS))
    assert contract.single_calls[0][4] == STUDENT_ADDRESS


def test_missing_fields_rejected_before_network(gateway, ledger):
    for row in (
        CertificateRow(course="B", cid="Qm1"),
        CertificateRow(name="A", cid="Qm1"),
        CertificateRow(name="A", course="B"),
    ):
        outcome = single(gateway, ledger).run(row)
        assert isinstance(outcome.error, MissingField)
        assert outcome.state == IssuanceState.ERRORED
    assert gateway.requests == 0


def test_invalid_wallet_rejected_before_network(gateway, ledger):
    outcome = single(gateway, ledger).run(CertificateRow(name="A", course="B", cid="Qm1", wallet="0xdead"))
    assert isinstance(outcome.error, InvalidAddress)
    assert gateway.requests == 0


def test_duplicate_cid_is_not_submitted(gateway, contract, ledger):
    ledger.upsert(IssuedRecord(cid="Qm1", name="X", course="Y", tx_hash="TX0", issued_at=1))
    outcome = single(gateway, ledger).run(CertificateRow(name="A", course="B", cid="Qm1"))

    assert isinstance(outcome.error, DuplicateCertificate)
    assert gateway.requests == 0
    assert contract.single_calls == []
    assert ledger.get("Qm1").name == "X"


def test_read_only_channel_fails_fast(ledger):
    contract = FakeContract(can_sign=False)
    outcome = single(FakeGateway(contract), ledger).run(CertificateRow(name="A", course="B", cid="Qm1"))

    assert isinstance(outcome.error, SigningUnavailable)
    assert outcome.status.startswith("Error issuing certificate:")
    assert not ledger.exists("Qm1")


def test_contract_failure_becomes_status(ledger, caplog):
    contract = FakeContract(fail=ContractCallError("logic eval error"))
    outcome = single(FakeGateway(contract), ledger).run(CertificateRow(name="A", course="B", cid="Qm1"))

    assert not outcome.ok
    assert "logic eval error" in outcome.status
    assert not ledger.exists("Qm1")
    assert "logic eval error" in caplog.text


def test_upload_supplies_cid(gateway, contract, ledger):
    uploader = FakeUploader(cid="QmFile")
    workflow = single(gateway, ledger, uploader=uploader)
    outcome = workflow.run(CertificateRow(name="A", course="B", asset=b"png", asset_name="a.png"))

    assert outcome.ok
    assert uploader.uploads == [(b"png", "a.png")]
    assert contract.single_calls[0][3] == "QmFile"
    assert IssuanceState.UPLOADING in workflow.history


def test_upload_failure(gateway, ledger):
    uploader = FakeUploader(fail=UploadError("IPFS add failed"))
    outcome = single(gateway, ledger, uploader=uploader).run(CertificateRow(name="A", course="B", asset=b"x"))
    assert isinstance(outcome.error, UploadError)
    assert gateway.requests == 0


def test_cancelled_before_signature(gateway, contract, ledger):
    cancel = threading.Event()
    cancel.set()
    outcome = single(gateway, ledger).run(CertificateRow(name="A", course="B", cid="Qm1"), cancel=cancel)
    assert isinstance(outcome.error, IssuanceCancelled)
    assert contract.single_calls == []


def test_batch_issues_one_transaction(gateway, contract, ledger):
    rows = [
        CertificateRow(name="A", course="Math", cid="Qm1"),
        CertificateRow(name="B", course="PE", class_name="8A", cid="Qm2", wallet=STUDENT_ADDRESS),
    ]
    outcome = batch(gateway, ledger).run(rows)

    assert outcome.ok
    assert outcome.tx_id == "BATCH1"
    assert contract.batch_calls == [(
        ["A", "B"], ["Math", "PE"], ["", "8A"], ["Qm1", "Qm2"], [ZERO_ADDRESS, STUDENT_ADDRESS],
    )]
    assert contract.confirmed == ["BATCH1"]
    assert [r.tx_hash for r in ledger.list()] == ["BATCH1", "BATCH1"]
    assert {r.issued_at for r in ledger.list()} == {1700000000}
    assert len(outcome.issued) == 2


def test_batch_drops_bad_rows_and_keeps_good(gateway, contract, ledger):
    ledger.upsert(IssuedRecord(cid="QmOld", name="X", course="Y", tx_hash="TX0", issued_at=1))
    rows = [
        CertificateRow(name="A", course="Math", cid="Qm1"),
        CertificateRow(name="", course="Sci", cid="Qm2"),
        CertificateRow(name="C", course="Art", cid="Qm3", wallet="not-an-address"),
        CertificateRow(name="D", course="Bio", cid="QmOld"),
    ]
    outcome = batch(gateway, ledger).run(rows)

    assert outcome.ok
    assert contract.batch_calls[0][3] == ["Qm1"]
    assert [r.issued for r in outcome.rows] == [True, False, False, False]
    assert "name" in outcome.rows[1].error
    assert "Invalid wallet" in outcome.rows[2].error
    assert "already recorded" in outcome.rows[3].error
    assert not ledger.exists("Qm2")


def test_batch_adversarial_duplicates_leave_nothing(gateway, contract, ledger):
    rows = [
        CertificateRow(name="A", course="Math", cid="Qm1"),
        CertificateRow(name="", course="Sci", cid="Qm2"),
        CertificateRow(name="B", course="PE", cid="Qm1"),
    ]
    outcome = batch(gateway, ledger).run(rows)

    assert not outcome.ok
    assert isinstance(outcome.error, NothingToIssue)
    assert gateway.requests == 0
    assert contract.batch_calls == []
    assert "another row" in outcome.rows[0].error
    assert "another row" in outcome.rows[2].error
    assert ledger.list() == []


def test_batch_uploads_rows_without_cid(gateway, contract, ledger):
    uploader = FakeUploader(cid="QmUp")
    rows = [
        CertificateRow(name="A", course="Math", asset=b"img"),
        CertificateRow(name="B", course="PE", cid="Qm2"),
    ]
    outcome = batch(gateway, ledger, uploader=uploader).run(rows)

    assert outcome.ok
    assert contract.batch_calls[0][3] == ["QmUp", "Qm2"]


def test_batch_empty(gateway, ledger):
    outcome = batch(gateway, ledger).run([])
    assert isinstance(outcome.error, NothingToIssue)


def test_batch_too_many_rows(gateway, ledger):
    rows = [CertificateRow(name="A", course="B", cid=f"Qm{i}") for i in range(501)]
    outcome = batch(gateway, ledger).run(rows)
    assert isinstance(outcome.error, ValueError)
    assert gateway.requests == 0


class FullDiskStorage(MemoryStorage):
    def set(self, key, value):
        raise OSError(28, "No space left on device")


def test_ledger_write_failure_keeps_confirmed_tx(gateway, contract, caplog):
    ledger = LedgerStore(FullDiskStorage())
    outcome = single(gateway, ledger).run(CertificateRow(name="A", course="B", cid="Qm1"))

    assert outcome.ok
    assert outcome.state == IssuanceState.RECORDED
    assert outcome.tx_id == "TX1"
    assert outcome.record.tx_hash == "TX1"
    assert outcome.saved is False
    assert "Certificate issued successfully" in outcome.status
    assert "local copy was not saved" in outcome.status
    assert "No space left on device" in caplog.text
    assert contract.confirmed == ["TX1"]


def test_batch_ledger_write_failure_keeps_confirmed_tx(gateway, contract, caplog):
    ledger = LedgerStore(FullDiskStorage())
    rows = [
        CertificateRow(name="A", course="Math", cid="Qm1"),
        CertificateRow(name="B", course="PE", cid="Qm2"),
    ]
    outcome = batch(gateway, ledger).run(rows)

    assert outcome.ok
    assert outcome.tx_id == "BATCH1"
    assert outcome.saved is False
    assert len(outcome.issued) == 2
    assert "local copy was not saved" in outcome.status
    assert "No space left on device" in caplog.text


def test_successful_issue_reports_saved(gateway, ledger):
    outcome = single(gateway, ledger).run(CertificateRow(name="A", course="B", cid="Qm1"))
    assert outcome.saved is True
    assert "not saved" not in outcome.status
