from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class IssuedRecord(BaseModel):
    """One issued certificate as mirrored in the local ledger.

    Serialized with camelCase keys (``className``, ``imageCid``, ``txHash``,
    ``issuedAt``) so the persisted blob keeps a stable layout.
    """

    model_config = ConfigDict(populate_by_name=True)

    cid: str
    name: str
    course: str
    class_name: Optional[str] = Field(default=None, alias="className")
    image_cid: Optional[str] = Field(default=None, alias="imageCid")
    tx_hash: Optional[str] = Field(default=None, alias="txHash")
    issued_at: int = Field(alias="issuedAt")
    revoked: bool = False

    @model_validator(mode="after")
    def _default_image_cid(self):
        if not self.image_cid:
            self.image_cid = self.cid
        return self

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True)

    def matches(self, term: str) -> bool:
        term = term.lower()
        return any(
            term in (value or "").lower()
            for value in (self.cid, self.name, self.course, self.class_name)
        )


class CertificateRow(BaseModel):
    """Input for one certificate, either issued alone or as a batch row."""

    name: str = ""
    course: str = ""
    class_name: str = ""
    wallet: str = ""
    cid: str = ""
    # Raw asset bytes to upload when no cid is known yet
    asset: Optional[bytes] = None
    asset_name: str = "certificate.bin"

    def cleaned(self) -> "CertificateRow":
        return self.model_copy(update={
            "name": self.name.strip(),
            "course": self.course.strip(),
            "class_name": self.class_name.strip(),
            "wallet": self.wallet.strip(),
            "cid": self.cid.strip(),
        })


class OnChainCertificate(BaseModel):
    exists: bool
    issuer: str
    name: str
    course: str
    content_hash: str
    issued_at: int
