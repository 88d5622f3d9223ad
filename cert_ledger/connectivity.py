import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Union

from algosdk import account, mnemonic
from algosdk.atomic_transaction_composer import AccountTransactionSigner
from algosdk.v2client.algod import AlgodClient

from cert_ledger.errors import NoChannelAvailable

logger = logging.getLogger(__name__)


def make_algod_client(url: str, api_key: str = "") -> AlgodClient:
    if api_key and api_key.strip():
        headers = {"X-API-Key": api_key}
        return AlgodClient(api_key, url, headers)
    return AlgodClient("", url)


def _timeout(timeout: Optional[float]) -> dict:
    # algod requests default to a 30s socket timeout when none is given
    return {} if timeout is None else {"timeout": timeout}


class PublicEndpoint:
    """A read-only algod node, identified by its URL."""

    def __init__(self, url: str, api_key: str = "", client: Optional[AlgodClient] = None):
        self.url = url
        self.client = client or make_algod_client(url, api_key)

    def block_number(self, timeout: Optional[float] = None) -> int:
        return self.client.status(**_timeout(timeout))["last-round"]

    def network(self, timeout: Optional[float] = None) -> str:
        return self.client.versions(**_timeout(timeout))["genesis_id"]


class WalletProvider:
    """
    Signing-capable access: an account key plus the node the wallet uses.

    The node's network may differ from the one we expect, in which case the
    wallet is ignored for this resolution.
    """

    def __init__(self, client: AlgodClient, private_key: str):
        self.client = client
        self._private_key = private_key
        self.address = account.address_from_private_key(private_key)

    @classmethod
    def from_mnemonic(cls, words: str, url: str, api_key: str = "") -> "WalletProvider":
        return cls(make_algod_client(url, api_key), mnemonic.to_private_key(words))

    def network(self, timeout: Optional[float] = None) -> str:
        return self.client.versions(**_timeout(timeout))["genesis_id"]

    def get_signer(self) -> AccountTransactionSigner:
        return AccountTransactionSigner(self._private_key)


@dataclass(frozen=True)
class WalletSigning:
    chain_id: str
    wallet: Any

    can_sign = True

    @property
    def client(self):
        return self.wallet.client

    def describe(self) -> str:
        return f"wallet {self.wallet.address} on {self.chain_id}"


@dataclass(frozen=True)
class PublicReadOnly:
    chain_id: str
    endpoint_url: str
    endpoint: Any

    can_sign = False

    @property
    def client(self):
        return self.endpoint.client

    def describe(self) -> str:
        return f"public node {self.endpoint_url} on {self.chain_id} (read-only)"


Channel = Union[WalletSigning, PublicReadOnly]


class ConnectivityResolver:
    """
    Decides how to reach the chain.

    A wallet on the expected network always wins since it is the only way
    to sign. Otherwise public endpoints are checked one at a time, in the
    order given, and the first live node on the right network is used.
    """

    def __init__(self, chain_id: str, endpoints: Sequence[Any], wallet=None,
                 liveness_timeout: float = 4.0):
        self.chain_id = chain_id
        self.endpoints = list(endpoints)
        self.wallet = wallet
        self.liveness_timeout = liveness_timeout

    def resolve(self) -> Channel:
        channel = self._wallet_channel()
        if channel is not None:
            return channel
        return self.resolve_public()

    def _wallet_channel(self) -> Optional[WalletSigning]:
        if self.wallet is None:
            return None
        try:
            network = self.wallet.network(timeout=self.liveness_timeout)
        except Exception as e:
            logger.warning(f"Wallet node unreachable, falling back to public nodes: {e}")
            return None
        if network != self.chain_id:
            logger.warning(
                f"Wallet is on {network}, expected {self.chain_id}; using read-only access"
            )
            return None
        logger.info(f"Using wallet {self.wallet.address} on {network}")
        return WalletSigning(chain_id=network, wallet=self.wallet)

    def resolve_public(self) -> PublicReadOnly:
        errors: List[str] = []
        for endpoint in self.endpoints:
            try:
                self._check_liveness(endpoint)
            except Exception as e:
                logger.warning(f"Endpoint {endpoint.url} rejected: {e}")
                errors.append(f"{endpoint.url}: {e}")
                continue
            logger.info(f"Using public node {endpoint.url}")
            return PublicReadOnly(chain_id=self.chain_id, endpoint_url=endpoint.url, endpoint=endpoint)

        raise NoChannelAvailable(
            f"Could not reach any node for {self.chain_id}. Network may be blocking node traffic.",
            details=errors,
        )

    def _check_liveness(self, endpoint) -> None:
        endpoint.block_number(timeout=self.liveness_timeout)
        network = endpoint.network(timeout=self.liveness_timeout)
        if network != self.chain_id:
            raise ValueError(f"node is on {network}, not {self.chain_id}")
