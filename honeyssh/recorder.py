import base64
import collections
import datetime
import json
import os
import time
from dataclasses import dataclass, field

from .logger import log

Event = collections.namedtuple('Event', ['relative_time', 'payload'])


class EventRecorder:
    """Append-only log of raw inbound data, one list per channel."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._started = clock()
        self._log = {}

    def elapsed(self):
        return self._clock() - self._started

    def record(self, channel, payload):
        event = Event(self.elapsed(), bytes(payload))
        self._log.setdefault(channel, []).append(event)
        return event

    def events(self):
        return {channel: list(events) for channel, events in self._log.items()}


@dataclass(frozen=True)
class SessionRecord:
    """Everything persisted about one connection. Built once at teardown."""
    id: int
    peer: str
    start_time: datetime.datetime
    user: str = None
    password: str = None
    key_fingerprint: str = None
    events: dict = field(default_factory=dict)
    requests: list = field(default_factory=list)
    duration: float = 0.0

    def summary(self):
        return (f"session {self.id} from {self.peer}: user={self.user!r} "
                f"password={self.password!r} key={self.key_fingerprint!r}")

    def to_dict(self):
        return {
            'id': self.id,
            'peer': self.peer,
            'start_time': self.start_time.isoformat(),
            'duration': round(self.duration, 6),
            'user': self.user,
            'password': self.password,
            'key_fingerprint': self.key_fingerprint,
            'requests': list(self.requests),
            'channels': {
                str(channel): [
                    {'t': round(e.relative_time, 6), 'data': base64.b64encode(e.payload).decode('ascii')}
                    for e in events
                ]
                for channel, events in self.events.items()
            },
        }


class SessionDumper:
    def __init__(self, dump_dir):
        self.dump_dir = dump_dir

    def path_for(self, record):
        stamp = record.start_time.strftime('%Y%m%dT%H%M%S')
        return os.path.join(self.dump_dir, f"{stamp}-{record.id}.dump")

    def write(self, record):
        """
        Writes the dump for ``record`` and returns its path.

        The file is created exclusively; any OSError (existing file, full
        disk, missing directory) propagates to the caller.
        """
        path = self.path_for(record)
        # Serialize first so a bad record never leaves a partial file
        text = record.summary() + "\n" + json.dumps(record.to_dict(), indent=2, sort_keys=True) + "\n"
        with open(path, 'x', encoding='utf-8') as f:
            f.write(text)
        log.info(f"[Dump] Session {record.id} written to {path}")
        return path


def read_dump(path):
    """Parses a dump file back into (summary line, dict with decoded payloads)."""
    with open(path, 'r', encoding='utf-8') as f:
        summary = f.readline().rstrip("\n")
        data = json.load(f)
    for events in data['channels'].values():
        for event in events:
            event['data'] = base64.b64decode(event['data'])
    return summary, data
