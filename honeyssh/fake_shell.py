from .command_handler import CommandHandler
from .logger import log

CR = 0x0d
INTERRUPT = 0x03
ERASE = 0x7f

DEFAULT_PROMPT = "$ "

def default_vars():
    return {
        "SHELL": "sh",
        "HOME": "/home/user",
        "USER": "user",
        "PATH": "/bin",
        "PS1": "$ ",
    }

class Environment:
    """Working directory, user and shell variables of one fake shell."""

    def __init__(self, cwd="", user="", vars=None):
        self.cwd = cwd
        self.user = user
        self.vars = default_vars() if vars is None else dict(vars)

    def get(self, name, default=None):
        return self.vars.get(name, default)

class FakeShell:
    """
    Line editor in front of the command handler.

    ``feed`` takes whatever bytes the client sent and returns the bytes to
    write back: the local echo, command output and fresh prompts.
    """

    def __init__(self, env=None, handler=None):
        self.env = env or Environment()
        self.handler = handler or CommandHandler()
        self.buffer = bytearray()

    def prompt(self):
        ps1 = self.env.get("PS1")
        if ps1 is None:
            return DEFAULT_PROMPT
        return ps1.replace("\\u", self.env.get("USER", ""))

    def feed(self, data):
        stdout = bytearray()

        for c in data:
            if c == CR:
                stdout += self.execute_buffer()
                self.buffer.clear()
            elif c == INTERRUPT:
                # ^C wins over anything already echoed in this chunk
                stdout.clear()
                stdout += b"^C\r\n" + self.prompt().encode()
                self.buffer.clear()
            elif c == ERASE:
                # Overstrike: restart the line visually and drop the last echoed byte
                stdout[0:0] = b"\r"
                stdout.pop()
                if self.buffer:
                    self.buffer.pop()
            else:
                stdout.append(c)
                self.buffer.append(c)

        return bytes(stdout)

    def execute_buffer(self):
        cmd = self.buffer.decode('utf-8', errors='replace')
        log.debug(f"[Shell] Line completed: {cmd!r}")
        return b"\r\n" + self.execute(self.expand(cmd)).encode('utf-8')

    def execute(self, cmd):
        out = self.handler.process_command(cmd)
        if out is None:
            return self.prompt()
        return out + "\r\n" + self.prompt()

    def expand(self, line):
        # Mapping order decides overlapping names ($HOME vs $HOMEDIR)
        for name, value in self.env.vars.items():
            line = line.replace(f"${name}", value)
        return line
