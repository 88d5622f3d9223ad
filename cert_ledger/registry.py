import logging
from typing import Callable, Dict

from cert_ledger.contracts import RegistryContract
from cert_ledger.errors import RegistryMisconfigured, RegistryUnreachable, UnknownService

logger = logging.getLogger(__name__)


class RegistryLookup:
    """Maps a logical service name to an application ID through the on-chain registry."""

    def __init__(self, registry_apps: Dict[str, int], registry_factory: Callable = RegistryContract):
        self.registry_apps = dict(registry_apps)
        self.registry_factory = registry_factory

    def registry_app_for(self, chain_id: str) -> int:
        app_id = self.registry_apps.get(chain_id)
        if not app_id:
            raise RegistryMisconfigured(
                f"No registry application configured for {chain_id}. Set REGISTRY_APP_ID or REGISTRY_APPS."
            )
        return app_id

    def resolve_address(self, channel, name: str) -> int:
        registry = self.registry_factory(channel, self.registry_app_for(channel.chain_id))
        try:
            app_id = registry.get_address_by_string(name)
        except Exception as e:
            raise RegistryUnreachable(f"Registry lookup for '{name}' failed: {e}") from e

        if not app_id:
            raise UnknownService(f"Registry does not contain '{name}' address.")
        logger.info(f"Registry resolved {name} -> app {app_id}")
        return app_id
