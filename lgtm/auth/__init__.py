# __init__.py for auth module
from .credential_store import CredentialStore, AuthCredential, AuthMethod
from .device_code_flow import DeviceCodeFlow, DeviceCode, FlowState
from .session import AuthSessionManager

__all__ = [
    'CredentialStore',
    'AuthCredential',
    'AuthMethod',
    'DeviceCodeFlow',
    'DeviceCode',
    'FlowState',
    'AuthSessionManager'
]
