from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
import base64
import os
import secrets
import string

_SPECIALS = "@#$%&*!"


class CredentialStrategy:
    """
    Strategy class for participant credentials: issues temporary passwords for
    admin-created accounts and stores passwords only as salted Scrypt digests.
    """
    def __init__(self, n: int = 2 ** 14, r: int = 8, p: int = 1, length: int = 32):
        self._n = n
        self._r = r
        self._p = p
        self._length = length

    def _kdf(self, salt: bytes) -> Scrypt:
        return Scrypt(salt=salt, length=self._length, n=self._n, r=self._r, p=self._p)

    def temporary_password(self, prefix: str = "Fest") -> str:
        """Random password with upper, lower, digit and special characters."""
        body = "".join(secrets.choice(string.ascii_lowercase + string.digits) for _ in range(8))
        return f"{prefix.capitalize()}{body}{secrets.choice(_SPECIALS)}{secrets.randbelow(90) + 10}"

    def hash(self, plain_text: str) -> str:
        if not plain_text:
            raise ValueError("Password must not be empty")
        salt = os.urandom(16)
        digest = self._kdf(salt).derive(plain_text.encode("utf-8"))
        return "scrypt$" + base64.urlsafe_b64encode(salt + digest).decode("utf-8")

    def verify(self, plain_text: str, hashed: str) -> bool:
        if not plain_text or not hashed or not hashed.startswith("scrypt$"):
            return False
        combined = base64.urlsafe_b64decode(hashed[len("scrypt$"):].encode("utf-8"))
        salt, digest = combined[:16], combined[16:]
        try:
            self._kdf(salt).verify(plain_text.encode("utf-8"), digest)
        except InvalidKey:
            return False
        return True
