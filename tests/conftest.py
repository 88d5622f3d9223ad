import pytest
from algosdk import encoding

from cert_ledger.errors import SigningUnavailable
from cert_ledger.models import OnChainCertificate
from cert_ledger.storage import LedgerStore, MemoryStorage

CHAIN_ID = "testnet-v1.0"
STUDENT_ADDRESS = encoding.encode_address(bytes([7] * 32))


class FakeEndpoint:
    def __init__(self, url, chain_id=CHAIN_ID, fail=None, delay=0.0):
        self.url = url
        self.chain_id = chain_id
        self.fail = fail
        # seconds the node would take to answer
        self.delay = delay
        self.client = f"client:{url}"
        self.checks = 0
        self.timeouts = []

    def block_number(self, timeout=None):
        self.checks += 1
        self.timeouts.append(timeout)
        if timeout is not None and self.delay > timeout:
            raise TimeoutError("timed out")
        if self.fail:
            raise self.fail
        return 1234

    def network(self, timeout=None):
        self.timeouts.append(timeout)
        return self.chain_id


class FakeWallet:
    def __init__(self, chain_id=CHAIN_ID, fail=None):
        self.chain_id = chain_id
        self.fail = fail
        self.address = STUDENT_ADDRESS
        self.client = "client:wallet"
        self.signer_requests = 0
        self.timeouts = []

    def network(self, timeout=None):
        self.timeouts.append(timeout)
        if self.fail:
            raise self.fail
        return self.chain_id

    def get_signer(self):
        self.signer_requests += 1
        return "signer"


class FakeRegistry:
    """Registry factory: ``FakeRegistry(...)(channel, app_id)`` mimics RegistryContract."""

    def __init__(self, services=None, fail_on=()):
        self.services = services if services is not None else {"Certificate": 42}
        self.fail_on = set(fail_on)
        self.calls = []

    def __call__(self, channel, app_id):
        registry = self

        class _Handle:
            def get_address_by_string(self, name):
                registry.calls.append((channel, app_id, name))
                if type(channel).__name__ in registry.fail_on:
                    raise ConnectionError("node reset the connection")
                return registry.services.get(name, 0)

        return _Handle()


class FakeContract:
    def __init__(self, channel=None, app_id=42, can_sign=True, fail=None, on_chain=None):
        self.channel = channel
        self.app_id = app_id
        self.can_sign = can_sign if channel is None else channel.can_sign
        self.fail = fail
        self.on_chain = on_chain or {}
        self.single_calls = []
        self.batch_calls = []
        self.confirmed = []

    def _check(self):
        if not self.can_sign:
            raise SigningUnavailable("A wallet on the expected network is required to issue certificates")
        if self.fail:
            raise self.fail

    def add_certificate(self, name, course, class_name, cid, destination):
        self._check()
        self.single_calls.append((name, course, class_name, cid, destination))
        return f"TX{len(self.single_calls)}"

    def add_certificates(self, names, courses, class_names, cids, destinations):
        self._check()
        self.batch_calls.append((names, courses, class_names, cids, destinations))
        return f"BATCH{len(self.batch_calls)}"

    def wait_for_confirmation(self, tx_id, rounds=4):
        self.confirmed.append(tx_id)
        return 100

    def verify_by_cid(self, cid):
        return self.on_chain.get(cid)


class FakeGateway:
    def __init__(self, contract):
        self.contract = contract
        self.requests = 0

    def get_certificate_contract(self):
        self.requests += 1
        return self.contract


class FakeUploader:
    def __init__(self, cid="QmUploaded", fail=None):
        self.cid = cid
        self.fail = fail
        self.uploads = []

    def upload(self, data, filename="certificate.bin"):
        self.uploads.append((data, filename))
        if self.fail:
            raise self.fail
        return self.cid


def on_chain_record(name="Ali Raza", course="Blockchain Fundamentals"):
    return OnChainCertificate(exists=True, issuer=STUDENT_ADDRESS, name=name, course=course,
                              content_hash="00" * 32, issued_at=1700000000)


@pytest.fixture
def ledger():
    return LedgerStore(MemoryStorage())


@pytest.fixture
def contract():
    return FakeContract()


@pytest.fixture
def gateway(contract):
    return FakeGateway(contract)
