import base64
import glob
import hashlib
import os

import paramiko

from .logger import log

# SSH method names as they appear in SSH_MSG_USERAUTH_REQUEST
AUTH_NONE = 'none'
AUTH_PASSWORD = 'password'
AUTH_PUBLICKEY = 'publickey'
AUTH_KEYBOARD_INTERACTIVE = 'keyboard-interactive'


def key_blob(key):
    """Wire-format bytes of a paramiko key (or the bytes themselves)."""
    if isinstance(key, (bytes, bytearray)):
        return bytes(key)
    return key.asbytes()


def key_fingerprint(key):
    """OpenSSH style SHA256 fingerprint, e.g. ``SHA256:nThbg6k...``."""
    digest = hashlib.sha256(key_blob(key)).digest()
    return "SHA256:" + base64.b64encode(digest).decode('ascii').rstrip('=')


def load_whitelist(directory):
    """
    Reads every ``*.pub`` file under ``directory``.

    Returns a frozenset of key blobs. A file that cannot be read or parsed
    is logged and skipped; it never aborts the whole load.
    """
    blobs = set()
    for path in sorted(glob.glob(os.path.join(glob.escape(directory), '*.pub'))):
        try:
            blob = paramiko.PublicBlob.from_file(path)
        except (OSError, ValueError, paramiko.SSHException) as e:
            log.warning(f"[Auth] Unable to load public key {path}: {e}")
            continue
        blobs.add(blob.key_blob)
    log.debug(f"[Auth] Whitelist loaded from {directory}: {len(blobs)} keys")
    return frozenset(blobs)


class CredentialAttempt:
    """Last offered identity. Each field keeps only the most recent value."""

    def __init__(self):
        self.user = None
        self.password = None
        self.key_fingerprint = None

    def __repr__(self):
        return (f"CredentialAttempt(user={self.user!r}, password={self.password!r}, "
                f"key_fingerprint={self.key_fingerprint!r})")


class AuthEngine:
    """
    Per-connection authentication decisions.

    Passwords always succeed (the shell behind them is fake), public keys
    only when byte-identical to a whitelisted key, everything else fails.
    Each attempt is decided on its own: no lockout, no counting.
    """

    def __init__(self, whitelist):
        self.whitelist = frozenset(whitelist)
        self.credentials = CredentialAttempt()

    def attempt(self, method, username, password=None, key=None):
        self.credentials.user = username

        if method == AUTH_PASSWORD:
            self.credentials.password = password
            log.info(f"[Auth] Password accepted for '{username}'")
            return True

        if method == AUTH_PUBLICKEY:
            return self._check_key(username, key)

        if method not in (AUTH_NONE, AUTH_KEYBOARD_INTERACTIVE):
            log.warning(f"[Auth] Unsupported method '{method}' from '{username}'")
        return False

    def _check_key(self, username, key):
        if key is None:
            return False
        offered = key_blob(key)
        if offered not in self.whitelist:
            log.info(f"[Auth] Public key {key_fingerprint(offered)} rejected for '{username}'")
            return False

        self.credentials.key_fingerprint = key_fingerprint(offered)
        log.info(f"[Auth] Public key {self.credentials.key_fingerprint} accepted for '{username}'")
        return True
