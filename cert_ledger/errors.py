class CertificateError(Exception):
    """Base class for every failure surfaced by cert_ledger."""


class NoChannelAvailable(CertificateError):
    """Neither the wallet nor any public endpoint could be reached."""

    def __init__(self, message, details=None):
        super().__init__(message)
        self.details = list(details or [])


class RegistryMisconfigured(CertificateError):
    pass


class UnknownService(CertificateError):
    pass


class RegistryUnreachable(CertificateError):
    pass


class MissingField(CertificateError):
    def __init__(self, field):
        super().__init__(f"Missing required field: {field}")
        self.field = field


class InvalidAddress(CertificateError):
    def __init__(self, address):
        super().__init__(f"Invalid wallet address: {address}")
        self.address = address


class DuplicateCertificate(CertificateError):
    def __init__(self, cid, reason="already recorded in the local ledger"):
        super().__init__(f"Certificate {cid} is {reason}")
        self.cid = cid


class SigningUnavailable(CertificateError):
    pass


class NothingToIssue(CertificateError):
    pass


class ContractCallError(CertificateError):
    pass


class UploadError(CertificateError):
    pass


class IssuanceCancelled(CertificateError):
    pass
