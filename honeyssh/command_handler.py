import re

from .logger import log

# Same set as str.split_ascii_whitespace: no vertical tab, no unicode spaces
ASCII_WHITESPACE = re.compile(r'[ \t\n\x0c\r]+')

class CommandHandler:
    """
    Emulated builtins for the fake shell.

    Every builtin is a ``handle_<name>(args)`` method returning the text to
    show; nothing here touches the real filesystem or runs a process.
    """

    def tokenize(self, cmd):
        return [part for part in ASCII_WHITESPACE.split(cmd) if part]

    def process_command(self, cmd):
        """
        Input: an already expanded command line.
        Output: the command's text (without line ending), or None for an empty line.
        """
        parts = self.tokenize(cmd)
        if not parts:
            return None

        base_cmd, args = parts[0], parts[1:]
        handler = getattr(self, f"handle_{base_cmd}", None)
        if handler is None:
            log.debug(f"[Command] Unknown command '{base_cmd}'")
            return self.not_found(base_cmd)

        log.debug(f"[Command] Dispatching '{base_cmd}' with {len(args)} args")
        return handler(args)

    def not_found(self, name):
        return f"sh: {name}: command not found..."

    def handle_id(self, args):
        return "uid=1000(user) gid=1000(user) groups=1000(user)"

    def handle_ls(self, args):
        # Bait listing, never the real directory
        return "info.txt  passwords.txt"

    def handle_cat(self, args):
        return ""

    def handle_echo(self, args):
        # No quoting or escapes: variables were expanded once already
        return "".join(f"{arg} " for arg in args)
