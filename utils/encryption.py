"""
Szyfrowanie danych uwierzytelniających botów

Klucze API zapisywane w magazynie są zawsze zaszyfrowane (Fernet).
Klucz szyfrowania pochodzi wprost ze zmiennej środowiskowej albo jest
wyprowadzany z hasła przez PBKDF2.
"""

import base64
import json
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from core.models import GatewayCredentials
from utils.logger import LogType, get_logger

logger = get_logger("encryption", LogType.SECURITY)

DEFAULT_SALT = b"cryptobot-engine-credential-vault"
PBKDF2_ITERATIONS = 100000


class VaultError(Exception):
    """Nie udało się zaszyfrować lub odszyfrować danych"""


class CredentialVault:
    """
    Sejf na dane uwierzytelniające

    Zarządza szyfrowaniem i deszyfrowaniem kluczy API
    przechowywanych razem z konfiguracją bota.
    """

    def __init__(self, key: bytes):
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            raise VaultError(f"Invalid vault key: {e}") from e

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("ascii")

    @classmethod
    def from_password(cls, password: str, salt: bytes = DEFAULT_SALT) -> "CredentialVault":
        """Wyprowadzenie klucza z hasła używając PBKDF2"""
        if not password:
            raise VaultError("Master password is empty")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,  # 256 bitów
            salt=salt,
            iterations=PBKDF2_ITERATIONS,
        )
        return cls(base64.urlsafe_b64encode(kdf.derive(password.encode("utf-8"))))

    @classmethod
    def from_env(cls, env_name: str = "CRYPTOBOT_VAULT_KEY") -> Optional["CredentialVault"]:
        """
        Tworzy sejf na podstawie zmiennej środowiskowej

        Wartość będąca poprawnym kluczem Fernet jest używana wprost,
        każda inna traktowana jest jak hasło.

        Returns:
            CredentialVault albo None gdy zmienna nie jest ustawiona
        """
        raw = os.getenv(env_name)
        if not raw:
            return None
        try:
            return cls(raw.encode("ascii"))
        except (VaultError, UnicodeEncodeError):
            return cls.from_password(raw)

    def seal(self, credentials: GatewayCredentials) -> str:
        """
        Szyfrowanie danych uwierzytelniających API

        Args:
            credentials: Dane do zaszyfrowania

        Returns:
            Token Fernet (tekst)
        """
        payload = json.dumps(credentials.to_dict(), sort_keys=True).encode("utf-8")
        return self._fernet.encrypt(payload).decode("ascii")

    def open(self, token: str) -> GatewayCredentials:
        """
        Deszyfrowanie danych uwierzytelniających API

        Raises:
            VaultError: token uszkodzony lub zaszyfrowany innym kluczem
        """
        try:
            payload = self._fernet.decrypt(token.encode("ascii"))
        except (InvalidToken, ValueError, AttributeError) as e:
            logger.warning("Failed to open sealed credentials")
            raise VaultError("Sealed credentials cannot be decrypted") from e
        return GatewayCredentials.from_mapping(json.loads(payload.decode("utf-8")))
