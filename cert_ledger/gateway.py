import logging
from typing import Callable

from cert_ledger.config import CERTIFICATE_SERVICE
from cert_ledger.connectivity import ConnectivityResolver
from cert_ledger.contracts import CertificateContract
from cert_ledger.errors import RegistryUnreachable
from cert_ledger.registry import RegistryLookup

logger = logging.getLogger(__name__)


class ContractGateway:
    """
    Hands out a ready certificate-contract handle.

    Nothing is cached: each request re-resolves the channel, so a wallet
    connected mid-session is picked up on the next call.
    """

    def __init__(self, resolver: ConnectivityResolver, registry: RegistryLookup,
                 contract_factory: Callable = CertificateContract):
        self.resolver = resolver
        self.registry = registry
        self.contract_factory = contract_factory

    def get_certificate_contract(self) -> CertificateContract:
        channel = self.resolver.resolve()
        logger.info(f"Connected via {channel.describe()}")

        try:
            app_id = self.registry.resolve_address(channel, CERTIFICATE_SERVICE)
        except RegistryUnreachable as e:
            # The wallet's node may be flaky even though signing works
            logger.warning(f"{e}; retrying on a public node")
            public = self.resolver.resolve_public()
            app_id = self.registry.resolve_address(public, CERTIFICATE_SERVICE)

        return self.contract_factory(channel, app_id)
