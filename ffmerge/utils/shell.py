"""Shell command execution utilities."""

import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Union

from ffmerge.utils.logger import get_logger

logger = get_logger(__name__)


class ShellError(Exception):
    """Shell command execution error."""

    def __init__(self, message: str, returncode: int, stdout: str = "", stderr: str = ""):
        """Initialize shell error.

        Args:
            message: Error message
            returncode: Process return code
            stdout: Standard output
            stderr: Standard error
        """
        super().__init__(message)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class ShellResult:
    """Shell command result."""

    def __init__(
        self,
        returncode: int,
        stdout: str,
        stderr: str,
        command: str,
        cwd: Optional[Path] = None,
    ):
        """Initialize shell result.

        Args:
            returncode: Process return code
            stdout: Standard output
            stderr: Standard error
            command: Executed command
            cwd: Working directory
        """
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.command = command
        self.cwd = cwd

    @property
    def success(self) -> bool:
        """Check if command succeeded."""
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Stripped standard output."""
        return self.stdout.strip()

    def check(self) -> "ShellResult":
        """Check result and raise error if failed.

        Returns:
            Self for chaining

        Raises:
            ShellError: If command failed
        """
        if not self.success:
            raise ShellError(
                f"Command failed: {self.command}",
                self.returncode,
                self.stdout,
                self.stderr,
            )
        return self


def run_command(
    command: List[str],
    cwd: Optional[Union[str, Path]] = None,
    check: bool = False,
) -> ShellResult:
    """Run a command and capture its output.

    There is no timeout; git and gh rely on their own network timeouts.

    Args:
        command: Executable and arguments
        cwd: Working directory
        check: Raise exception on failure

    Returns:
        Command result

    Raises:
        ShellError: If the executable is missing, or the command fails and check=True
    """
    command_str = " ".join(command)
    cwd_path = Path(cwd) if cwd else None

    logger.debug(f"Running command: {command_str} (cwd: {cwd_path})")

    try:
        result = subprocess.run(command, cwd=cwd_path, capture_output=True, text=True)
    except FileNotFoundError as e:
        logger.error(f"Command not found: {command_str}")
        raise ShellError(f"Command not found: {command_str}", -1, "", str(e))

    shell_result = ShellResult(
        returncode=result.returncode,
        stdout=result.stdout or "",
        stderr=result.stderr or "",
        command=command_str,
        cwd=cwd_path,
    )

    if result.returncode != 0:
        logger.debug(f"Command failed with code {result.returncode}: {command_str}")
        if result.stderr:
            logger.debug(f"stderr: {result.stderr}")

    if check:
        shell_result.check()

    return shell_result


def check_command_exists(command: str) -> bool:
    """Check if a command exists in PATH.

    Args:
        command: Command name to check

    Returns:
        True if command exists, False otherwise
    """
    return shutil.which(command) is not None


def get_git_root(cwd: Optional[Union[str, Path]] = None) -> Optional[Path]:
    """Get git repository root directory.

    Args:
        cwd: Directory to start from (current directory if None)

    Returns:
        Git root path or None if not in a git repo
    """
    try:
        result = run_command(["git", "rev-parse", "--show-toplevel"], cwd=cwd, check=True)
        return Path(result.output)
    except ShellError:
        return None

