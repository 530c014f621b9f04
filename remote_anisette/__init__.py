__all__ = [
    "DeviceIdentity",
    "ProvisioningSession",
    "State",
    "exceptions",
    "messages",
    "transport",
]

from . import exceptions, messages, transport
from .device import DeviceIdentity
from .provisioning import ProvisioningSession, State
