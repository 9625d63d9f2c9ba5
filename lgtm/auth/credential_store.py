"""
Credential storage using the OS keyring.
The credential record is encrypted with Fernet before it reaches the
keyring backend and is never written anywhere as plaintext.
"""

import base64
import json
import logging
import platform
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

import keyring
from keyring.backend import KeyringBackend
from keyring.backends import fail
from keyring.errors import PasswordDeleteError
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from lgtm.errors import ConfigError


logger = logging.getLogger(__name__)

MACHINE_ID_PATHS = ("/etc/machine-id", "/var/lib/dbus/machine-id")


class AuthMethod(str, Enum):
    """How a credential was obtained."""
    BROWSER = "browser"
    TOKEN = "token"


@dataclass
class AuthCredential:
    """The single stored GitHub credential."""
    token: str = field(repr=False)
    method: AuthMethod
    username: Optional[str] = None

    def to_record(self) -> Dict[str, Optional[str]]:
        return {
            "token": self.token,
            "username": self.username,
            "method": AuthMethod(self.method).value,
        }

    @classmethod
    def from_record(cls, record: Dict) -> "AuthCredential":
        return cls(
            token=record["token"],
            method=AuthMethod(record["method"]),
            username=record.get("username"),
        )


class CredentialStore:
    """
    One encrypted credential record in the OS keyring.

    No retry logic here: a keyring failure is terminal for the caller.
    """

    SERVICE_NAME = "lgtm-cli"
    ACCOUNT_NAME = "github"
    SALT = b"lgtm-cli-credential-salt"

    def __init__(
        self,
        backend: Optional[KeyringBackend] = None,
        service_name: str = SERVICE_NAME,
        memory_fallback: bool = False
    ):
        """
        Initialize credential store.

        Args:
            backend: Keyring backend (default: keyring.get_keyring())
            service_name: Keyring service name
            memory_fallback: Keep the record in process memory when no
                usable keyring backend exists
        """
        self.service_name = service_name
        self._backend = backend if backend is not None else keyring.get_keyring()
        self._memory: Optional[Dict[str, str]] = None

        if not self._backend_available():
            if memory_fallback:
                logger.warning(
                    "No usable OS keyring backend found. Credentials are kept in memory "
                    "and will not survive a restart."
                )
                self._memory = {}
            else:
                logger.error(
                    f"No usable OS keyring backend found ({type(self._backend).__name__}); "
                    "credentials cannot be stored"
                )

        self._cipher = Fernet(self._derive_key())

    @property
    def is_persistent(self) -> bool:
        return self._memory is None and self._backend_available()

    def _backend_available(self) -> bool:
        if isinstance(self._backend, fail.Keyring):
            return False
        try:
            return self._backend.priority > 0
        except Exception as e:
            logger.debug(f"Keyring backend not viable: {e}")
            return False

    def _derive_key(self) -> bytes:
        """
        Derive the encryption key from a machine identifier.
        Uses PBKDF2-HMAC-SHA256 for key derivation.
        """
        machine_id = self._machine_id()
        if not machine_id:
            logger.warning("Could not determine a machine identifier, using fallback secret")
            machine_id = "fallback-secret"
        password = f"{self.service_name}-{machine_id}".encode()

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=self.SALT,
            iterations=100000,
        )
        return base64.urlsafe_b64encode(kdf.derive(password))

    @staticmethod
    def _machine_id() -> str:
        for candidate in MACHINE_ID_PATHS:
            try:
                value = Path(candidate).read_text().strip()
            except OSError:
                continue
            if value:
                return value

        if platform.system() == "Darwin":
            try:
                result = subprocess.run(
                    ["ioreg", "-rd1", "-c", "IOPlatformExpertDevice"],
                    capture_output=True,
                    text=True,
                    check=False
                )
            except OSError as e:
                logger.debug(f"ioreg unavailable: {e}")
                return ""
            for line in result.stdout.split("\n"):
                if "IOPlatformUUID" in line:
                    return line.split("=")[-1].strip().strip('"')
        return ""

    def _encrypt(self, data: str) -> str:
        return self._cipher.encrypt(data.encode()).decode()

    def _decrypt(self, encrypted: str) -> str:
        return self._cipher.decrypt(encrypted.encode()).decode()

    def _unavailable(self) -> ConfigError:
        return ConfigError(
            "No usable OS keyring backend is available to store GitHub credentials",
            context={"backend": type(self._backend).__name__},
        )

    def save(self, credential: AuthCredential):
        """
        Replace the stored credential.

        Raises:
            ConfigError: If the keyring write fails
        """
        encrypted = self._encrypt(json.dumps(credential.to_record()))

        if self._memory is not None:
            self._memory[self.ACCOUNT_NAME] = encrypted
            logger.info("Credential saved in memory only")
            return
        if not self._backend_available():
            raise self._unavailable()

        try:
            self._backend.set_password(self.service_name, self.ACCOUNT_NAME, encrypted)
        except Exception as e:
            logger.error(f"Failed to save credential: {e}")
            raise ConfigError(f"Failed to save credentials: {e}") from e

        logger.info(f"Credential saved for {credential.username or 'unknown user'}")

    def load(self) -> Optional[AuthCredential]:
        """
        Retrieve the stored credential.

        Returns:
            AuthCredential or None if nothing usable is stored

        Raises:
            ConfigError: If the keyring cannot be read
        """
        if self._memory is not None:
            encrypted = self._memory.get(self.ACCOUNT_NAME)
        elif not self._backend_available():
            raise self._unavailable()
        else:
            try:
                encrypted = self._backend.get_password(self.service_name, self.ACCOUNT_NAME)
            except Exception as e:
                logger.error(f"Failed to read credential: {e}")
                raise ConfigError(f"Failed to read credentials: {e}") from e

        if not encrypted:
            logger.debug("No stored credential")
            return None

        try:
            record = json.loads(self._decrypt(encrypted))
            return AuthCredential.from_record(record)
        except (InvalidToken, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable stored credential: {type(e).__name__}")
            return None

    def clear(self) -> bool:
        """
        Delete the stored credential.

        Returns:
            True if nothing is stored afterwards
        """
        if self._memory is not None:
            self._memory.pop(self.ACCOUNT_NAME, None)
            return True
        if not self._backend_available():
            logger.error("Cannot clear credentials: no usable OS keyring backend")
            return False

        try:
            self._backend.delete_password(self.service_name, self.ACCOUNT_NAME)
        except PasswordDeleteError:
            logger.debug("No stored credential to delete")
            return True
        except Exception as e:
            logger.error(f"Failed to delete credential: {e}")
            return False

        logger.info("Credential deleted")
        return True
