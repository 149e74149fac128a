"""Inbound events a session reacts to, and the actions it hands back."""
import collections

# --- Inbound ---
AuthAttempt = collections.namedtuple('AuthAttempt', ['method', 'username', 'password', 'key'], defaults=(None, None))
ChannelOpen = collections.namedtuple('ChannelOpen', ['channel'])
ChannelData = collections.namedtuple('ChannelData', ['channel', 'data'])
ChannelClose = collections.namedtuple('ChannelClose', ['channel'])
# kind: 'pty', 'shell', 'env', 'window-change', 'exec' or 'subsystem'
ChannelRequest = collections.namedtuple('ChannelRequest', ['channel', 'kind', 'details'], defaults=(None,))

# --- Outbound ---
Verdict = collections.namedtuple('Verdict', ['accepted'])
Write = collections.namedtuple('Write', ['channel', 'data'])

ACCEPTED_REQUESTS = frozenset({'pty', 'shell', 'env', 'window-change'})
