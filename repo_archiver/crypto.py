"""
Encryption of destination credentials at rest

Copyright 2025 HyperSec

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

import base64
import hashlib
from typing import Tuple

from cryptography.fernet import Fernet, InvalidToken

from .base import DestinationCredential


class CredentialCipher:
    """
    Fernet cipher keyed from a shared secret.

    The secret is hashed with SHA-256 so any length of ENCRYPTION_KEY
    yields a valid 32-byte Fernet key.
    """

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("Encryption key is required")
        digest = hashlib.sha256(secret.encode()).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, token: str) -> str:
        """
        Decrypt a value produced by encrypt().

        Raises:
            ValueError: If the token is malformed or was encrypted with another key
        """
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except InvalidToken as e:
            raise ValueError("Unable to decrypt credential") from e

    def decrypt_credentials(self, destination: DestinationCredential) -> Tuple[str, str]:
        return (
            self.decrypt(destination.access_key_id),
            self.decrypt(destination.secret_access_key),
        )
