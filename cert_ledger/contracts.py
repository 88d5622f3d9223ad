"""
cert_ledger.contracts
---------------------
ABI handles for the two on-chain applications this client talks to: the
service registry and the certificate application. Reads are simulated with
empty signatures; writes are signed by the wallet, submitted, and confirmed
separately so callers can report each step.
"""

import logging
from typing import Any, List, Optional

from algosdk import abi, encoding, logic
from algosdk.atomic_transaction_composer import AtomicTransactionComposer, EmptySigner
from algosdk.transaction import wait_for_confirmation
from algosdk.v2client.models import SimulateRequest

from cert_ledger.errors import ContractCallError, SigningUnavailable
from cert_ledger.models import OnChainCertificate

logger = logging.getLogger(__name__)

ZERO_ADDRESS = encoding.encode_address(bytes(32))

REGISTRY_METHODS = {
    "getAddressByString": abi.Method.from_signature("getAddressByString(string)uint64"),
}

CERTIFICATE_METHODS = {
    "addCertificate": abi.Method.from_signature(
        "addCertificate(string,string,string,string,address)void"
    ),
    "addCertificates": abi.Method.from_signature(
        "addCertificates(string[],string[],string[],string[],address[])void"
    ),
    "verifyByCid": abi.Method.from_signature(
        "verifyByCid(string)(bool,address,string,string,byte[32],uint64)"
    ),
    "certificateExists": abi.Method.from_signature("certificateExists(string)bool"),
}


def is_valid_address(value: str) -> bool:
    return bool(value) and encoding.is_valid_address(value)


class AppHandle:
    """Calls ABI methods on one application through a resolved channel."""

    methods: dict = {}

    def __init__(self, channel, app_id: int):
        self.channel = channel
        self.app_id = app_id

    @property
    def can_sign(self) -> bool:
        return self.channel.can_sign

    @property
    def client(self):
        return self.channel.client

    def _method(self, name):
        return self.methods[name]

    def call_readonly(self, name: str, *args) -> Any:
        # Simulated from the app's own account, which deployment funds
        atc = AtomicTransactionComposer()
        atc.add_method_call(
            app_id=self.app_id,
            method=self._method(name),
            sender=logic.get_application_address(self.app_id),
            sp=self.client.suggested_params(),
            signer=EmptySigner(),
            method_args=list(args),
        )
        request = SimulateRequest(
            txn_groups=[],
            allow_empty_signatures=True,
            allow_unnamed_resources=True,
        )
        result = atc.simulate(self.client, request)
        if result.failure_message:
            raise ContractCallError(f"{name} failed: {result.failure_message}")
        abi_result = result.abi_results[0]
        if abi_result.decode_error:
            raise ContractCallError(f"{name} returned undecodable data: {abi_result.decode_error}")
        return abi_result.return_value

    def submit(self, name: str, *args) -> str:
        """Sign and send a state-changing call; returns the transaction ID."""
        if not self.can_sign:
            raise SigningUnavailable(
                "A wallet on the expected network is required to issue certificates"
            )
        wallet = self.channel.wallet
        atc = AtomicTransactionComposer()
        atc.add_method_call(
            app_id=self.app_id,
            method=self._method(name),
            sender=wallet.address,
            sp=self.client.suggested_params(),
            signer=wallet.get_signer(),
            method_args=list(args),
        )
        tx_ids = atc.submit(self.client)
        logger.info(f"Transaction sent: {tx_ids[0]}")
        return tx_ids[0]

    def wait_for_confirmation(self, tx_id: str, rounds: int = 4) -> int:
        info = wait_for_confirmation(self.client, tx_id, rounds)
        confirmed_round = info.get("confirmed-round")
        logger.info(f"Transaction {tx_id} confirmed in round {confirmed_round}")
        return confirmed_round


class RegistryContract(AppHandle):
    methods = REGISTRY_METHODS

    def get_address_by_string(self, name: str) -> int:
        return int(self.call_readonly("getAddressByString", name))


class CertificateContract(AppHandle):
    methods = CERTIFICATE_METHODS

    def add_certificate(self, name, course, class_name, cid, destination) -> str:
        return self.submit("addCertificate", name, course, class_name, cid, destination)

    def add_certificates(self, names: List[str], courses: List[str], class_names: List[str],
                         cids: List[str], destinations: List[str]) -> str:
        lengths = {len(names), len(courses), len(class_names), len(cids), len(destinations)}
        if len(lengths) != 1:
            raise ValueError("addCertificates needs arrays of equal length")
        return self.submit("addCertificates", names, courses, class_names, cids, destinations)

    def verify_by_cid(self, cid: str) -> Optional[OnChainCertificate]:
        exists, issuer, name, course, content_hash, issued_at = self.call_readonly("verifyByCid", cid)
        if not exists:
            return None
        return OnChainCertificate(
            exists=True,
            issuer=issuer,
            name=name,
            course=course,
            content_hash=bytes(content_hash).hex(),
            issued_at=int(issued_at),
        )

    def certificate_exists(self, cid: str) -> bool:
        return bool(self.call_readonly("certificateExists", cid))
