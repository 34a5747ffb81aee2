"""Key lifecycle and encryption-at-rest for everything written to the secure store."""

from magda.security.key_manager import KeyManager
from magda.security.cipher import CipherCodec
