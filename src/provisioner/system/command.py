"""Command models for host execution."""

import shlex
from dataclasses import dataclass, field
from shutil import which

DEFAULT_SHELL = "/bin/sh"


@dataclass
class Command:
    """Represents a command to be executed on the host.

    Attributes:
        executable: The command to execute
        args: Arguments to pass to the executable
        user: Optional user to run the command as (via sudo)
    """

    executable: str
    args: list[str] = field(default_factory=list)
    user: str = ""

    @classmethod
    def shell(cls, script: str, user: str = "") -> "Command":
        """Build a command that runs a script through the POSIX shell.

        Args:
            script: Shell script text (pipes and redirections allowed)
            user: Optional user to run the script as

        Returns:
            Command instance
        """
        return cls(executable=DEFAULT_SHELL, args=["-c", script], user=user)

    @property
    def full_command(self) -> list[str]:
        """Build the full command including sudo if needed.

        Returns:
            List of command components
        """
        executable_path = which(self.executable) or self.executable

        cmd: list[str] = []
        if self.user and self.user != "root":
            cmd.extend(["sudo", "-u", self.user])

        cmd.append(executable_path)
        cmd.extend(self.args)
        return cmd

    @property
    def command_string(self) -> str:
        """Build the command as a properly escaped shell string."""
        return shlex.join(self.full_command)


class CommandError(Exception):
    """Raised when a command exits non-zero or cannot be started.

    Attributes:
        command: The command that failed
        returncode: Exit code from the command (-1 if it never ran to completion)
        output: Combined stdout/stderr output
    """

    def __init__(self, command: str, returncode: int, output: str) -> None:
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(f"Command failed with exit code {returncode}: {command}")
