"""
Remote command execution on cluster nodes.

The orchestrators and the node driver reach cluster nodes only through the
RemoteExecutor protocol: run a shell command, copy a local file to a node,
copy a node's file back.

SshExecutor implements it with the OpenSSH client binaries (ssh/scp),
running them as asyncio subprocesses. Authentication is whatever the local
ssh configuration provides.

Invariants:
    - A non-zero exit status is always an error (RemoteCommandError)
    - upload_file() creates the remote directory first
    - No timeout is imposed here; ssh's own ConnectTimeout applies
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
from abc import abstractmethod
from typing import Any, List, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class RemoteCommandError(Exception):
    """A remote command or file copy exited with a non-zero status."""

    def __init__(self, host: str, command: str, returncode: int, stderr: str) -> None:
        super().__init__(
            f"command failed on {host} with exit status {returncode}: {stderr.strip() or command}"
        )
        self.host = host
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


@runtime_checkable
class RemoteExecutor(Protocol):
    """Protocol for running commands and copying files on cluster nodes."""

    @abstractmethod
    async def run(self, host: str, command: str) -> str:
        """Run a shell command on host and return its stdout.

        Raises:
            RemoteCommandError: If the command exits non-zero
        """
        ...

    @abstractmethod
    async def upload_file(self, host: str, local_path: str, remote_dir: str) -> str:
        """Copy a local file into remote_dir on host.

        Returns:
            Remote path of the copied file
        """
        ...

    @abstractmethod
    async def fetch_file(self, host: str, remote_path: str, local_dir: str) -> str:
        """Copy a file from host into local_dir.

        Returns:
            Local path of the copied file
        """
        ...


class SshExecutor:
    """RemoteExecutor backed by ssh and scp subprocesses.

    Attributes:
        config: SshConfig instance

    Example:
        >>> executor = SshExecutor(config.ssh)
        >>> out = await executor.run("10.0.0.1", "nodetool status")
    """

    def __init__(self, config: Any) -> None:
        self.config = config

    def _destination(self, host: str) -> str:
        return f"{self.config.user}@{host}" if self.config.user else host

    def _common_options(self) -> List[str]:
        options = [
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={self.config.connect_timeout}",
        ]
        if self.config.identity_file:
            options += ["-i", self.config.identity_file]
        if not self.config.strict_host_key_checking:
            options += ["-o", "StrictHostKeyChecking=no"]
        return options

    def ssh_args(self, host: str, command: str) -> List[str]:
        return [
            self.config.ssh_path,
            *self._common_options(),
            "-p", str(self.config.port),
            self._destination(host),
            command,
        ]

    def scp_args(self, source: str, target: str) -> List[str]:
        return [
            self.config.scp_path,
            *self._common_options(),
            "-P", str(self.config.port),
            source,
            target,
        ]

    async def _exec(self, host: str, args: List[str]) -> str:
        logger.debug("Executing", extra={"host": host, "args": args})
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise RemoteCommandError(
                host,
                " ".join(args),
                process.returncode,
                stderr.decode("utf-8", errors="replace"),
            )
        return stdout.decode("utf-8", errors="replace")

    async def run(self, host: str, command: str) -> str:
        return await self._exec(host, self.ssh_args(host, command))

    async def upload_file(self, host: str, local_path: str, remote_dir: str) -> str:
        await self.run(host, f"mkdir -p {shlex.quote(remote_dir)}")
        remote_path = f"{remote_dir.rstrip('/')}/{os.path.basename(local_path)}"
        await self._exec(
            host,
            self.scp_args(local_path, f"{self._destination(host)}:{remote_path}"),
        )
        return remote_path

    async def fetch_file(self, host: str, remote_path: str, local_dir: str) -> str:
        os.makedirs(local_dir, exist_ok=True)
        local_path = os.path.join(local_dir, os.path.basename(remote_path))
        await self._exec(
            host,
            self.scp_args(f"{self._destination(host)}:{remote_path}", local_path),
        )
        return local_path
