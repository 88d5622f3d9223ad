"""URL builders for what the CLI shows next to a certificate."""


def gateway_url(cid: str, gateway: str = "https://ipfs.io/ipfs") -> str:
    if not cid:
        return ""
    return f"{gateway.rstrip('/')}/{cid}"


def tx_url(tx_id: str, explorer: str = "https://testnet.explorer.perawallet.app") -> str:
    if not tx_id:
        return ""
    return f"{explorer.rstrip('/')}/tx/{tx_id}"
