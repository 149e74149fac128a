import argparse
import itertools
import logging
import os
import socket
import sys
import threading
import time
from dataclasses import dataclass

import paramiko

from .auth import (
    AUTH_KEYBOARD_INTERACTIVE, AUTH_NONE, AUTH_PASSWORD, AUTH_PUBLICKEY, load_whitelist,
)
from .config_manager import config
from .events import AuthAttempt, ChannelClose, ChannelData, ChannelOpen, ChannelRequest, Verdict, Write
from .logger import log, set_level
from .recorder import SessionDumper
from .session import HoneySession

HOST_KEY_CLASSES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)
RECV_SIZE = 1024

# --- Logging Filter for Paramiko Noise ---
class ParamikoFilter(logging.Filter):
    def filter(self, record):
        # Suppress "Error reading SSH protocol banner" tracebacks from port scanners
        msg = record.getMessage()
        if "Error reading SSH protocol banner" in msg:
            return False
        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            if "Error reading SSH protocol banner" in str(exc_value):
                return False
        return True

# Apply Filter
logging.getLogger("paramiko.transport").addFilter(ParamikoFilter())
# -----------------------------------------


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, resolved once in main() and never changed."""
    host: str
    port: int
    host_key: paramiko.PKey
    client_keys_dir: str
    dump_dir: str
    banner: str
    connection_timeout: float
    accept_timeout: float


class ConnectionCounter:
    """Hands out connection ids. Owned by the listener."""

    def __init__(self, start=1):
        self._ids = itertools.count(start)
        self._lock = threading.Lock()

    def next(self):
        with self._lock:
            return next(self._ids)


def parse_listen_address(text):
    """'192.168.0.1:2222' or '[::1]:2222' -> (host, port)"""
    host, sep, port = text.rpartition(':')
    if not sep or not host:
        raise ValueError(f"expected HOST:PORT, got {text!r}")
    if host.startswith('[') and host.endswith(']'):
        host = host[1:-1]
    elif ':' in host:
        raise ValueError(f"IPv6 addresses must be bracketed, e.g. [::]:2222 (got {text!r})")
    try:
        port = int(port)
    except ValueError:
        raise ValueError(f"invalid port in {text!r}") from None
    if not 0 <= port <= 65535:
        raise ValueError(f"port out of range in {text!r}")
    return host, port


def format_peer(addr):
    host, port = addr[0], addr[1]
    if ':' in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def load_host_key(path):
    """Loads the server's private key, whatever its type. Raises on failure."""
    if not os.path.isfile(path):
        raise FileNotFoundError(f"no such key file: {path}")
    errors = []
    for key_class in HOST_KEY_CLASSES:
        try:
            return key_class.from_private_key_file(path)
        except (paramiko.SSHException, ValueError) as e:
            errors.append(f"{key_class.__name__}: {e}")
    raise paramiko.SSHException(f"unsupported or encrypted key {path} ({'; '.join(errors)})")


def _text(value):
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    return value


def _secret(value):
    # Undecodable bytes are kept as lone surrogates; encode with surrogateescape to get them back
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='surrogateescape')
    return value


class HoneypotServer(paramiko.ServerInterface):
    """Turns paramiko callbacks into session events."""

    def __init__(self, session):
        self.session = session

    def _decide(self, event):
        actions = self.session.handle(event)
        return any(isinstance(a, Verdict) and a.accepted for a in actions)

    def _auth(self, event):
        return paramiko.AUTH_SUCCESSFUL if self._decide(event) else paramiko.AUTH_FAILED

    def get_allowed_auths(self, username):
        return 'password,publickey,keyboard-interactive'

    def check_auth_none(self, username):
        return self._auth(AuthAttempt(AUTH_NONE, username))

    def check_auth_password(self, username, password):
        return self._auth(AuthAttempt(AUTH_PASSWORD, username, password=_secret(password)))

    def check_auth_publickey(self, username, key):
        return self._auth(AuthAttempt(AUTH_PUBLICKEY, username, key=key))

    def check_auth_interactive(self, username, submethods):
        return self._auth(AuthAttempt(AUTH_KEYBOARD_INTERACTIVE, username))

    def check_channel_request(self, kind, chanid):
        if kind == 'session':
            return paramiko.OPEN_SUCCEEDED
        log.info(f"[Session {self.session.session_id}] refused '{kind}' channel")
        return paramiko.OPEN_FAILED_ADMINISTRATIVELY_PROHIBITED

    def check_channel_pty_request(self, channel, term, width, height, pixelwidth, pixelheight, modes):
        return self._decide(ChannelRequest(channel.get_id(), 'pty', {
            'term': _text(term), 'width': width, 'height': height,
        }))

    def check_channel_shell_request(self, channel):
        return self._decide(ChannelRequest(channel.get_id(), 'shell'))

    def check_channel_env_request(self, channel, name, value):
        return self._decide(ChannelRequest(channel.get_id(), 'env', {'name': _text(name), 'value': _text(value)}))

    def check_channel_window_change_request(self, channel, width, height, pixelwidth, pixelheight):
        return self._decide(ChannelRequest(channel.get_id(), 'window-change', {'width': width, 'height': height}))

    def check_channel_exec_request(self, channel, command):
        return self._decide(ChannelRequest(channel.get_id(), 'exec', {'command': _text(command)}))

    def check_channel_subsystem_request(self, channel, name):
        return self._decide(ChannelRequest(channel.get_id(), 'subsystem', {'name': _text(name)}))


def _apply(chan, actions):
    for action in actions:
        if isinstance(action, Write):
            chan.sendall(action.data)


def pump_channel(session, chan, idle_timeout):
    """Feeds everything read from ``chan`` through the session until EOF."""
    chanid = chan.get_id()
    try:
        chan.settimeout(idle_timeout)
        _apply(chan, session.handle(ChannelOpen(chanid)))
        while True:
            data = chan.recv(RECV_SIZE)
            if not data:
                break
            _apply(chan, session.handle(ChannelData(chanid, data)))
    except socket.timeout:
        log.info(f"[Session {session.session_id}] channel {chanid} idle for {idle_timeout}s, closing")
    except (OSError, EOFError, paramiko.SSHException) as e:
        log.info(f"[Session {session.session_id}] channel {chanid} dropped: {e}")
    finally:
        session.handle(ChannelClose(chanid))
        chan.close()


def _accept_channels(transport, session, settings, pumps):
    deadline = time.monotonic() + settings.accept_timeout
    while transport.is_active():
        chan = transport.accept(1)
        if chan is None:
            if any(t.is_alive() for t in pumps):
                deadline = time.monotonic() + settings.accept_timeout
            elif time.monotonic() > deadline:
                log.info(f"[Session {session.session_id}] no open channels for {settings.accept_timeout}s, closing")
                break
            continue
        t = threading.Thread(target=pump_channel, args=(session, chan, settings.connection_timeout),
                             name=f"honeyssh-{session.session_id}-{chan.get_id()}", daemon=True)
        t.start()
        pumps.append(t)


def handle_connection(client, addr, session_id, settings):
    """
    Runs one connection from handshake to teardown.
    The session dump is written on every path out of here.
    """
    peer = format_peer(addr)
    session = None
    transport = None
    pumps = []
    try:
        try:
            whitelist = load_whitelist(settings.client_keys_dir)
        except Exception:
            log.exception(f"[!] Whitelist unavailable for {peer}, rejecting all keys")
            whitelist = frozenset()
        session = HoneySession(session_id, peer, whitelist, SessionDumper(settings.dump_dir))
        log.info(f"[*] New Session {session_id} from {peer}")

        transport = paramiko.Transport(client)
        # Deception: Mask the banner to look like a real OpenSSH server
        transport.local_version = settings.banner
        transport.add_server_key(settings.host_key)
        transport.start_server(server=HoneypotServer(session))
        _accept_channels(transport, session, settings, pumps)
    except (paramiko.SSHException, EOFError, OSError) as e:
        log.warning(f"[!] SSH Error with {peer}: {e}")
    except Exception as e:
        log.exception(f"[!] Unexpected error with {peer}: {e}")
    finally:
        if transport is not None:
            transport.close()
        else:
            client.close()
        for t in pumps:
            t.join()
        if session is None:
            log.error(f"[!] Session {session_id} from {peer}: no session state, nothing to dump")
        else:
            try:
                session.finalize()
            except Exception:
                log.exception(f"[!] Session {session_id} from {peer}: dump could not be written")
        log.info(f"[*] Session {session_id} from {peer} ended")


def open_listener(host, port, max_retries=5):
    # Create Socket (IPv4/IPv6 Dual Stack Support)
    addr_family = socket.AF_INET6 if ':' in host else socket.AF_INET
    sock = socket.socket(addr_family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

    # Enable Dual Stack if using IPv6 (binds to :: but accepts IPv4 mapped)
    if addr_family == socket.AF_INET6:
        try:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
        except OSError as e:
            log.warning(f"[!] Could not set IPV6_V6ONLY=0: {e}")

    # Bind with Graceful Retry
    for attempt in range(max_retries):
        try:
            sock.bind((host, port))
            sock.listen(100)
            return sock
        except OSError as e:
            if e.errno == 98 and attempt < max_retries - 1: # Address already in use
                log.warning(f"[!] Address {host}:{port} currently in use. Retrying in 2s... ({attempt+1}/{max_retries})")
                time.sleep(2)
                continue
            sock.close()
            raise


def serve(sock, settings, counter=None):
    counter = counter or ConnectionCounter()
    log.info(f"[*] Listening on {settings.host}:{settings.port}")
    while True:
        client, addr = sock.accept()
        t = threading.Thread(target=handle_connection, args=(client, addr, counter.next(), settings))
        t.start()


def fatal(message):
    log.error(message)
    sys.exit(1)


def main(argv=None):
    parser = argparse.ArgumentParser(prog="honeyssh", description="SSH Honeypot Server",
                                     epilog="example: honeyssh 192.168.0.1:2222")
    parser.add_argument("address", help="listen socket, HOST:PORT or [IPV6]:PORT")
    args = parser.parse_args(argv)

    set_level(config.get('logging', 'level') or 'INFO')

    try:
        host, port = parse_listen_address(args.address)
    except ValueError as e:
        fatal(f"[!] Critical: {e}")

    key_path = config.get('server', 'host_key_file')
    try:
        host_key = load_host_key(key_path)
    except (OSError, paramiko.SSHException) as e:
        fatal(f"[!] Critical: Unable to load server key: {e}")

    keys_dir = config.get('server', 'client_keys_dir')
    if not os.path.isdir(keys_dir):
        fatal(f"[!] Critical: Client key directory {keys_dir} does not exist")

    dump_dir = config.get('server', 'dump_dir')
    try:
        os.makedirs(dump_dir, exist_ok=True)
    except OSError as e:
        fatal(f"[!] Critical: Unable to create dump dir {dump_dir}: {e}")

    settings = Settings(
        host=host,
        port=port,
        host_key=host_key,
        client_keys_dir=keys_dir,
        dump_dir=dump_dir,
        banner=config.get('server', 'banner'),
        connection_timeout=float(config.get('server', 'connection_timeout')),
        accept_timeout=float(config.get('server', 'accept_timeout')),
    )
    log.info(f"[*] Host key {host_key.get_name()} loaded from {key_path}")

    try:
        sock = open_listener(host, port)
    except OSError as e:
        fatal(f"[!] Critical: Failed to bind to {args.address}: {e}")

    serve(sock, settings)

if __name__ == "__main__":
    main()
