"""PID file tracking for the gateway process."""

import os
import signal
from pathlib import Path
from typing import Optional


class PIDFile:
    """Tracks the running gateway through a PID file.

    Example:
        pid_file = PIDFile(config.pid_file)

        if pid_file.is_running():
            print(f"Gateway already running (PID {pid_file.read()})")
        else:
            pid_file.create()
            try:
                ...
            finally:
                pid_file.remove()
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def create(self) -> None:
        """Write the current process ID, creating the parent directory."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(os.getpid()))

    def remove(self) -> None:
        self.path.unlink(missing_ok=True)

    def read(self) -> Optional[int]:
        """Read the stored PID.

        Returns:
            The PID, or None if the file is missing or unreadable
        """
        try:
            return int(self.path.read_text().strip())
        except (ValueError, OSError):
            return None

    def is_running(self) -> bool:
        """Whether the process named in the file is alive."""
        pid = self.read()
        if pid is None:
            return False

        try:
            os.kill(pid, 0)
        except (OSError, ProcessLookupError):
            return False
        return True

    def clear_if_stale(self) -> bool:
        """Remove the file when its process is gone.

        Returns:
            True if a stale file was removed
        """
        if self.read() is None or self.is_running():
            return False
        self.remove()
        return True

    def terminate(self, sig: signal.Signals = signal.SIGTERM) -> Optional[int]:
        """Send a signal to the running gateway.

        Returns:
            The signalled PID, or None if no gateway is running
        """
        if not self.is_running():
            return None
        pid = self.read()
        os.kill(pid, sig)
        return pid
