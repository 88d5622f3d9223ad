import os
import json
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Network selection: 'testnet' or 'mainnet'
NETWORKS = {
    "testnet": {
        "chain_id": "testnet-v1.0",
        "public_urls": [
            "https://testnet-api.algonode.cloud",
            "https://testnet-api.4160.nodely.dev",
        ],
        "explorer": "https://testnet.explorer.perawallet.app",
    },
    "mainnet": {
        "chain_id": "mainnet-v1.0",
        "public_urls": [
            "https://mainnet-api.algonode.cloud",
            "https://mainnet-api.4160.nodely.dev",
        ],
        "explorer": "https://explorer.perawallet.app",
    },
}

CERTIFICATE_SERVICE = "Certificate"
LEDGER_KEY = "issued_v1"
LEDGER_CAPACITY = 500
MAX_BATCH_ROWS = 500


class Settings(BaseModel):
    network: str = "testnet"
    chain_id: str = NETWORKS["testnet"]["chain_id"]

    # Wallet: a signing account plus the node it talks to
    wallet_algod_url: Optional[str] = None
    wallet_algod_key: str = ""
    deployer_mnemonic: Optional[str] = None

    public_algod_urls: List[str] = NETWORKS["testnet"]["public_urls"]
    public_algod_key: str = ""
    liveness_timeout: float = 4.0

    # genesis id -> registry application id
    registry_apps: Dict[str, int] = {}

    ledger_path: Optional[str] = "~/.cert_ledger/ledger.json"

    ipfs_api_url: str = "http://127.0.0.1:5001/api/v0/add"
    ipfs_gateway: str = "https://ipfs.io/ipfs"
    explorer_url: str = NETWORKS["testnet"]["explorer"]

    verify_mode: str = "chain"

    @property
    def has_wallet(self) -> bool:
        return bool(self.deployer_mnemonic and self.wallet_algod_url)

    @classmethod
    def from_env(cls, dotenv=True) -> "Settings":
        """Build settings from the process environment (and a .env file, if any)."""
        if dotenv:
            load_dotenv()

        network = os.getenv("NETWORK", "testnet").lower()
        if network not in NETWORKS:
            raise ValueError(f"Unknown NETWORK: {network}")
        defaults = NETWORKS[network]
        chain_id = os.getenv("CHAIN_ID", defaults["chain_id"])

        urls = os.getenv("PUBLIC_ALGOD_URLS")
        public_urls = [u.strip() for u in urls.split(",") if u.strip()] if urls else defaults["public_urls"]

        registry_apps = {}
        if os.getenv("REGISTRY_APPS"):
            registry_apps = {k: int(v) for k, v in json.loads(os.getenv("REGISTRY_APPS")).items()}
        if os.getenv("REGISTRY_APP_ID"):
            registry_apps[chain_id] = int(os.getenv("REGISTRY_APP_ID"))

        # An explicitly empty LEDGER_PATH disables local persistence
        ledger_path = os.getenv("LEDGER_PATH", cls.model_fields["ledger_path"].default)

        return cls(
            network=network,
            chain_id=chain_id,
            wallet_algod_url=os.getenv("ALGOD_API_URL") or None,
            wallet_algod_key=os.getenv("ALGOD_API_KEY", ""),
            deployer_mnemonic=os.getenv("DEPLOYER") or None,
            public_algod_urls=public_urls,
            public_algod_key=os.getenv("PUBLIC_ALGOD_KEY", ""),
            liveness_timeout=float(os.getenv("LIVENESS_TIMEOUT", "4")),
            registry_apps=registry_apps,
            ledger_path=ledger_path or None,
            ipfs_api_url=os.getenv("IPFS_API_URL", cls.model_fields["ipfs_api_url"].default),
            ipfs_gateway=os.getenv("IPFS_GATEWAY", cls.model_fields["ipfs_gateway"].default),
            explorer_url=os.getenv("EXPLORER_URL", defaults["explorer"]),
            verify_mode=os.getenv("VERIFY_MODE", "chain").lower(),
        )
