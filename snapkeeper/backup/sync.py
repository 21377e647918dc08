"""
Synchronization service for backup sources.

Mirrors remote source trees into the working mirror with rsync:
- rsync daemon endpoints (host::module, rsync://host/module) authenticate
  with a password file
- remote shell endpoints (user@host:) authenticate with an SSH private key
"""

import logging
import shlex
import subprocess
from pathlib import Path
from typing import List, Optional

from .errors import TransferError, TransferTimeout


logger = logging.getLogger(__name__)


# rsync exit codes that count as success. 24 is "partial transfer due to
# vanished source files", expected when the remote tree changes during a run.
BENIGN_EXIT_CODES = frozenset({0, 24})


class RsyncTransfer:
    """
    One-way mirror transfer from a remote endpoint into a local directory.
    """

    def __init__(
        self,
        remote: str,
        credential,
        exclude_patterns: List[str] = None,
        preserve_permissions: bool = True,
        rsync_binary: str = 'rsync'
    ):
        """
        Initialize rsync transfer handler.

        Args:
            remote: Endpoint prefix, e.g. 'backup@nas::data' or 'backup@nas:'
            credential: Path to the password file or SSH private key
            exclude_patterns: rsync exclude patterns (e.g., *.tmp, .cache/)
            preserve_permissions: Keep ownership, ACLs and xattrs
            rsync_binary: rsync executable
        """
        self.remote = remote
        self.credential = Path(credential)
        self.exclude_patterns = exclude_patterns or []
        self.preserve_permissions = preserve_permissions
        self.rsync_binary = rsync_binary

    @property
    def is_daemon(self) -> bool:
        return '::' in self.remote or self.remote.startswith('rsync://')

    def source_url(self, source_path: str) -> str:
        """Full rsync source for a path, with a trailing slash to copy contents."""
        if self.remote.endswith(':'):
            url = f"{self.remote}{source_path}"
        else:
            url = f"{self.remote.rstrip('/')}/{source_path.lstrip('/')}"
        if not url.endswith('/'):
            url += '/'
        return url

    def build_command(self, source_path: str, dest, link_dest=None) -> List[str]:
        """
        Build the rsync command line.

        Args:
            source_path: Path on the remote endpoint
            dest: Local destination directory
            link_dest: Previous copy of dest to hard-link unchanged files against
        """
        cmd = [self.rsync_binary]

        if self.preserve_permissions:
            cmd += ['--archive', '--hard-links', '--acls', '--xattrs', '--numeric-ids']
        else:
            cmd += ['--recursive', '--links', '--times']

        cmd += ['--delete', '--delete-excluded']

        for pattern in self.exclude_patterns:
            cmd.append(f'--exclude={pattern}')

        if link_dest is not None:
            cmd.append(f'--link-dest={link_dest}')

        if self.is_daemon:
            cmd.append(f'--password-file={self.credential}')
        else:
            cmd += ['-e', f'ssh -i {shlex.quote(str(self.credential))} -o BatchMode=yes']

        cmd.append(self.source_url(source_path))
        cmd.append(f'{dest}/')
        return cmd

    def transfer(self, source_path: str, dest, link_dest=None, timeout: Optional[float] = None) -> int:
        """
        Mirror one source into dest.

        Args:
            source_path: Path on the remote endpoint
            dest: Local destination directory (created if missing)
            link_dest: Optional incremental-copy hint
            timeout: Seconds before the transfer is cancelled

        Returns:
            rsync exit code (one of BENIGN_EXIT_CODES)

        Raises:
            TransferTimeout: If the timeout expires
            TransferError: If rsync fails or cannot be started
        """
        if timeout is not None and timeout <= 0:
            raise TransferTimeout(f"No time left to transfer {source_path}")

        dest = Path(dest)
        try:
            dest.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TransferError(f"Failed to create destination {dest}: {e}")

        cmd = self.build_command(source_path, dest, link_dest)
        logger.debug(f"Running: {shlex.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False
            )
        except subprocess.TimeoutExpired:
            raise TransferTimeout(f"Transfer of {source_path} timed out after {timeout:.0f}s")
        except OSError as e:
            raise TransferError(f"Failed to start {self.rsync_binary}: {e}")

        if result.returncode not in BENIGN_EXIT_CODES:
            stderr = result.stderr.strip().splitlines()
            detail = stderr[-1] if stderr else 'no error output'
            raise TransferError(
                f"rsync exited {result.returncode} for {self.source_url(source_path)}: {detail}"
            )

        if result.returncode != 0:
            logger.warning(f"Partial transfer of {source_path} (files vanished), exit code {result.returncode}")

        return result.returncode
