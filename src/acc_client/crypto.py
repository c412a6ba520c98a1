"""Password cipher for secrets stored on the server (external accounts).

Encrypted values look like ``"@" + base64(ciphertext)``. The key material
is the base64 value of the ``XtkSecretKey`` option: 32 bytes of AES-256 key,
optionally followed by a 16-byte initialization vector (a zero IV is used
otherwise). Plain text is PKCS7-padded and encrypted in CBC mode.
"""

from __future__ import annotations

import base64
import binascii

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher as _AESCipher
from cryptography.hazmat.primitives.ciphers import algorithms, modes

from .errors import bad_parameter

KEY_SIZE = 32
IV_SIZE = 16


class Cipher:
    def __init__(self, key: str) -> None:
        try:
            material = base64.b64decode(key or "", validate=True)
        except (binascii.Error, ValueError) as e:
            raise bad_parameter(f"Invalid cipher key: {e}") from e
        if len(material) not in (KEY_SIZE, KEY_SIZE + IV_SIZE):
            raise bad_parameter(
                f"Invalid cipher key: expecting {KEY_SIZE} or {KEY_SIZE + IV_SIZE} bytes, got {len(material)}"
            )
        self._key = material[:KEY_SIZE]
        self._iv = material[KEY_SIZE:] or bytes(IV_SIZE)

    def _cipher(self) -> _AESCipher:
        return _AESCipher(algorithms.AES(self._key), modes.CBC(self._iv))

    def encrypt_password(self, password: str) -> str:
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        data = padder.update((password or "").encode("utf-8")) + padder.finalize()
        encryptor = self._cipher().encryptor()
        encrypted = encryptor.update(data) + encryptor.finalize()
        return "@" + base64.b64encode(encrypted).decode("ascii")

    def decrypt_password(self, password: str) -> str:
        if not password:
            return ""
        if not password.startswith("@"):
            # not encrypted
            return password
        try:
            encrypted = base64.b64decode(password[1:], validate=True)
            decryptor = self._cipher().decryptor()
            data = decryptor.update(encrypted) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plain = unpadder.update(data) + unpadder.finalize()
            return plain.decode("utf-8")
        except (binascii.Error, ValueError) as e:
            raise bad_parameter(f"Cannot decrypt password: {e}") from e
