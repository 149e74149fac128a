import datetime
import threading
import time

from .auth import AuthEngine
from .events import (
    ACCEPTED_REQUESTS, AuthAttempt, ChannelClose, ChannelData, ChannelOpen,
    ChannelRequest, Verdict, Write,
)
from .fake_shell import FakeShell
from .logger import log
from .recorder import EventRecorder, SessionRecord


class HoneySession:
    """
    State of one accepted connection.

    All mutation goes through ``handle``, which returns the actions the
    transport should carry out. ``finalize`` persists the record exactly once.
    """

    def __init__(self, session_id, peer, whitelist, dumper, clock=time.monotonic):
        self.session_id = session_id
        self.peer = peer
        self.start_time = datetime.datetime.now(datetime.timezone.utc)
        self.auth = AuthEngine(whitelist)
        self.recorder = EventRecorder(clock)
        self.dumper = dumper
        self.shells = {}
        self.requests = []

        self._lock = threading.Lock()
        self._finalized = False
        self._dump_path = None

    def handle(self, event):
        with self._lock:
            if isinstance(event, AuthAttempt):
                accepted = self.auth.attempt(event.method, event.username, event.password, event.key)
                log.info(f"[Session {self.session_id}] auth {event.method} for '{event.username}': "
                         f"{'accepted' if accepted else 'rejected'}")
                return [Verdict(accepted)]

            if isinstance(event, ChannelOpen):
                shell = self.shells.setdefault(event.channel, FakeShell())
                log.info(f"[Session {self.session_id}] channel {event.channel} opened")
                return [Write(event.channel, shell.prompt().encode())]

            if isinstance(event, ChannelData):
                # Recorded as received, before the line editor interprets it
                self.recorder.record(event.channel, event.data)
                shell = self.shells.setdefault(event.channel, FakeShell())
                out = shell.feed(event.data)
                return [Write(event.channel, out)] if out else []

            if isinstance(event, ChannelRequest):
                accepted = event.kind in ACCEPTED_REQUESTS
                self.requests.append({
                    't': round(self.recorder.elapsed(), 6),
                    'channel': event.channel,
                    'kind': event.kind,
                    'details': event.details,
                    'accepted': accepted,
                })
                log.debug(f"[Session {self.session_id}] {event.kind} request on channel {event.channel}: {event.details}")
                return [Verdict(accepted)]

            if isinstance(event, ChannelClose):
                self.shells.pop(event.channel, None)
                log.info(f"[Session {self.session_id}] channel {event.channel} closed")
                return []

            raise TypeError(f"unknown session event {event!r}")

    def build_record(self):
        creds = self.auth.credentials
        return SessionRecord(
            id=self.session_id,
            peer=self.peer,
            start_time=self.start_time,
            user=creds.user,
            password=creds.password,
            key_fingerprint=creds.key_fingerprint,
            events=self.recorder.events(),
            requests=list(self.requests),
            duration=self.recorder.elapsed(),
        )

    def finalize(self):
        """
        Writes the session dump. Only the first call writes; later calls
        return the first call's path. A failed write is not retried.
        """
        with self._lock:
            if self._finalized:
                return self._dump_path
            self._finalized = True
            # Held through the write so concurrent callers see the final path
            self._dump_path = self.dumper.write(self.build_record())
            return self._dump_path
