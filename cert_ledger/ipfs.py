import json
import logging

import requests

from cert_ledger.errors import UploadError

logger = logging.getLogger(__name__)


class IpfsUploader:
    """Adds files through a Kubo-compatible ``/api/v0/add`` endpoint."""

    def __init__(self, api_url: str = "http://127.0.0.1:5001/api/v0/add", timeout: float = 60.0,
                 session=None):
        self.api_url = api_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def upload(self, data: bytes, filename: str = "certificate.bin") -> str:
        try:
            resp = self.session.post(
                self.api_url,
                params={"pin": "true", "wrap-with-directory": "false"},
                files={"file": (filename, data)},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise UploadError(f"IPFS add failed: {e}") from e

        # Kubo may stream newline-delimited JSON; the last line describes the file
        lines = [line for line in resp.text.strip().splitlines() if line.strip()]
        if not lines:
            raise UploadError("IPFS add returned an empty response")
        try:
            cid = json.loads(lines[-1]).get("Hash")
        except json.JSONDecodeError as e:
            raise UploadError(f"IPFS add returned invalid JSON: {e}") from e
        if not cid:
            raise UploadError("IPFS add response has no Hash")

        logger.info(f"Uploaded {filename} ({len(data)} bytes) as {cid}")
        return cid
