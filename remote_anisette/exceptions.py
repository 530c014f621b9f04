from typing import Optional


class AnisetteError(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def __str__(self):
        return self.reason


class TransportError(AnisetteError):
    """Socket or HTTP failure, the caller may retry the whole operation"""


class DecodeError(AnisetteError):
    """A JSON or property list payload did not have the expected shape"""


class ServerError(AnisetteError):
    def __init__(
        self, message: str, description: str = "", code: Optional[int] = None
    ):
        super().__init__(f"{message} - {description}" if description else message)
        self.message = message
        self.description = description
        self.code = code


class MissingSecret(AnisetteError):
    def __init__(self, reason: str = "Device has not been provisioned (no adi_pb)"):
        super().__init__(reason)


class IncompleteHandshake(AnisetteError):
    def __init__(
        self, reason: str = "Provisioning session closed before it completed"
    ):
        super().__init__(reason)


class ProvisioningTimeout(AnisetteError):
    def __init__(self, reason: str = "Provisioning session timed out"):
        super().__init__(reason)
