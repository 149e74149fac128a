#!/usr/bin/env python3
import argparse
import glob
import os
import sys
from datetime import datetime

from dateutil import tz
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

# Add project root to sys.path so the honeyssh package resolves when run from a checkout
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(BASE_DIR)
sys.path.append(PROJECT_ROOT)

from honeyssh.fake_shell import FakeShell
from honeyssh.recorder import read_dump

console = Console()

def to_local_time(ts_str):
    if not ts_str: return "-"
    try:
        dt = datetime.fromisoformat(ts_str)
    except ValueError:
        return ts_str
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz.tzutc())
    return dt.astimezone(tz.tzlocal()).strftime("%Y-%m-%d %H:%M:%S")

def load_dumps(dump_dir):
    """Returns [(path, data)] for every readable dump, oldest first."""
    dumps = []
    for path in glob.glob(os.path.join(dump_dir, "*.dump")):
        try:
            _, data = read_dump(path)
        except (OSError, ValueError, KeyError) as e:
            console.print(f"[yellow][!] Skipping {path}: {e}[/yellow]")
            continue
        dumps.append((path, data))
    dumps.sort(key=lambda item: (item[1]['start_time'], item[1]['id']))
    return dumps

def keystrokes(data):
    """Raw bytes received per channel, in delivery order."""
    return {channel: b"".join(e['data'] for e in events) for channel, events in data['channels'].items()}

def replay(data):
    """Feeds the captured input through a fresh shell to rebuild what the attacker saw."""
    transcripts = {}
    for channel, raw in keystrokes(data).items():
        shell = FakeShell()
        transcripts[channel] = shell.prompt().encode() + shell.feed(raw)
    return transcripts

def printable(value):
    # Undecodable password bytes come back as lone surrogates
    raw = value.encode('utf-8', 'surrogateescape')
    return raw.decode('utf-8', 'backslashreplace')

def list_sessions(dump_dir, limit=50):
    dumps = load_dumps(dump_dir)[-limit:]
    if not dumps:
        console.print(f"[yellow]No dumps found in {dump_dir}.[/yellow]")
        return

    table = Table(title=f"Sessions in {dump_dir} (Last {limit})", box=box.SIMPLE)
    table.add_column("Start Time")
    table.add_column("ID", justify="right")
    table.add_column("Peer")
    table.add_column("User")
    table.add_column("Password")
    table.add_column("Key")
    table.add_column("Bytes", justify="right")
    table.add_column("Duration", justify="right")

    for path, data in dumps:
        size = sum(len(raw) for raw in keystrokes(data).values())
        table.add_row(
            to_local_time(data['start_time']),
            str(data['id']),
            escape(data["peer"]),
            escape(data["user"] or "-"),
            escape(printable(data["password"] or "-")),
            (data['key_fingerprint'] or "-")[:20],
            str(size),
            f"{data['duration']:.1f}s",
        )
    console.print(table)

def show_session(path):
    summary, data = read_dump(path)
    console.print(f"[bold]{escape(summary)}[/bold]")
    for request in data['requests']:
        details = escape(str(request['details'] or ''))
        console.print(f"[dim]{request['t']:>10.3f}s  {request['kind']} {details}[/dim]")
    for channel, transcript in replay(data).items():
        console.print(f"[bold]--- channel {channel} ---[/bold]")
        console.print(transcript.decode('utf-8', errors='replace').replace('\r', ''), markup=False)

def main(argv=None):
    parser = argparse.ArgumentParser(description="honeyssh dump inspection tool")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--sessions", action="store_true", help="List captured sessions (default)")
    group.add_argument("--replay", metavar="DUMP", help="Replay one dump's keystrokes through the fake shell")
    parser.add_argument("--dump-dir", default=os.getenv("HONEYSSH_DUMP_DIR", "dump"), help="Dump directory (default: dump)")
    parser.add_argument("--limit", type=int, default=50, help="Number of rows to show (default: 50)")
    args = parser.parse_args(argv)

    if args.replay:
        show_session(args.replay)
    else:
        list_sessions(args.dump_dir, limit=args.limit)

if __name__ == "__main__":
    main()
