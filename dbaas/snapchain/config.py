"""
Configuration management for SnapChain.

All configuration is done via environment variables; command line flags
only override individual settings. This module provides typed
configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Keyspace and bucket must be set explicitly before a run
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - S3_BASE_PATH and CASSANDRA_KEYSPACE are part of every object key;
      changing them hides existing backups
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_list(name: str) -> Tuple[str, ...]:
    return tuple(h.strip() for h in os.getenv(name, "").split(",") if h.strip())


@dataclass(frozen=True)
class S3Config:
    """S3 configuration for backup storage.

    Attributes:
        bucket: S3 bucket name
        region: AWS region
        endpoint_url: Custom endpoint URL (for MinIO)
        base_path: Prefix of all keys inside the bucket
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
    """

    bucket: str = "snapchain-backups"
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None
    base_path: str = "cassandra"
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=os.getenv("S3_BUCKET", "snapchain-backups"),
            region=os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1")),
            endpoint_url=os.getenv("S3_ENDPOINT"),
            base_path=os.getenv("S3_BASE_PATH", "cassandra"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        )


@dataclass(frozen=True)
class CassandraConfig:
    """Cassandra cluster configuration.

    Attributes:
        keyspace: Keyspace to back up or restore
        hosts: Explicit host list; discovered from seed_host when empty
        seed_host: Host queried with `nodetool status` for discovery
        data_dir: Cassandra data directory on the nodes
        nodetool_path: nodetool binary on the nodes
        cqlsh_path: cqlsh binary on the nodes
        sstableloader_path: sstableloader binary on the nodes
    """

    keyspace: str = ""
    hosts: Tuple[str, ...] = ()
    seed_host: str = "localhost"
    data_dir: str = "/var/lib/cassandra/data"
    nodetool_path: str = "nodetool"
    cqlsh_path: str = "cqlsh"
    sstableloader_path: str = "sstableloader"

    @classmethod
    def from_env(cls) -> CassandraConfig:
        """Load configuration from environment variables."""
        return cls(
            keyspace=os.getenv("CASSANDRA_KEYSPACE", ""),
            hosts=_env_list("CASSANDRA_HOSTS"),
            seed_host=os.getenv("CASSANDRA_SEED_HOST", "localhost"),
            data_dir=os.getenv("CASSANDRA_DATA_DIR", "/var/lib/cassandra/data"),
            nodetool_path=os.getenv("CASSANDRA_NODETOOL", "nodetool"),
            cqlsh_path=os.getenv("CASSANDRA_CQLSH", "cqlsh"),
            sstableloader_path=os.getenv("CASSANDRA_SSTABLELOADER", "sstableloader"),
        )


@dataclass(frozen=True)
class SshConfig:
    """SSH access to cluster nodes.

    Attributes:
        user: Remote user (ssh default when unset)
        port: SSH port
        identity_file: Private key file
        connect_timeout: ssh ConnectTimeout in seconds
        strict_host_key_checking: Verify host keys
        ssh_path: ssh binary
        scp_path: scp binary
    """

    user: Optional[str] = None
    port: int = 22
    identity_file: Optional[str] = None
    connect_timeout: int = 10
    strict_host_key_checking: bool = True
    ssh_path: str = "ssh"
    scp_path: str = "scp"

    @classmethod
    def from_env(cls) -> SshConfig:
        """Load configuration from environment variables."""
        return cls(
            user=os.getenv("SSH_USER"),
            port=int(os.getenv("SSH_PORT", "22")),
            identity_file=os.getenv("SSH_IDENTITY_FILE"),
            connect_timeout=int(os.getenv("SSH_CONNECT_TIMEOUT", "10")),
            strict_host_key_checking=_env_bool("SSH_STRICT_HOST_KEY_CHECKING", "true"),
            ssh_path=os.getenv("SSH_PATH", "ssh"),
            scp_path=os.getenv("SCP_PATH", "scp"),
        )


@dataclass(frozen=True)
class BackupConfig:
    """Backup run configuration.

    Attributes:
        incremental: Request an incremental backup (forced off when no
            backup exists yet)
        max_parallel_hosts: Hosts snapshotted/uploaded concurrently
            (1 = sequential)
        temp_dir: Local working directory for staging files
        strict_keys: Fail history loading on malformed keys instead of
            skipping them
    """

    incremental: bool = False
    max_parallel_hosts: int = 1
    temp_dir: str = "/tmp/snapchain"
    strict_keys: bool = True

    @classmethod
    def from_env(cls) -> BackupConfig:
        """Load configuration from environment variables."""
        return cls(
            incremental=_env_bool("BACKUP_INCREMENTAL", "false"),
            max_parallel_hosts=int(os.getenv("BACKUP_MAX_PARALLEL_HOSTS", "1")),
            temp_dir=os.getenv("BACKUP_TEMP_DIR", "/tmp/snapchain"),
            strict_keys=_env_bool("BACKUP_STRICT_KEYS", "true"),
        )


@dataclass(frozen=True)
class RestoreConfig:
    """Restore run configuration.

    Attributes:
        snapshot: Timestamp to restore (latest when unset)
        host: Host used for schema and bulk load (first host when unset)
        dry_run: Resolve and validate only, change nothing
    """

    snapshot: Optional[str] = None
    host: Optional[str] = None
    dry_run: bool = False

    @classmethod
    def from_env(cls) -> RestoreConfig:
        """Load configuration from environment variables."""
        return cls(
            snapshot=os.getenv("RESTORE_SNAPSHOT") or None,
            host=os.getenv("RESTORE_HOST") or None,
            dry_run=_env_bool("RESTORE_DRY_RUN", "false"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class AppConfig:
    """Complete SnapChain configuration.

    Attributes:
        s3: S3 configuration
        cassandra: Cassandra configuration
        ssh: SSH configuration
        backup: Backup configuration
        restore: Restore configuration
        observability: Logging configuration
    """

    s3: S3Config = field(default_factory=S3Config)
    cassandra: CassandraConfig = field(default_factory=CassandraConfig)
    ssh: SshConfig = field(default_factory=SshConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    restore: RestoreConfig = field(default_factory=RestoreConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @property
    def keyspace(self) -> str:
        return self.cassandra.keyspace

    @property
    def base_path(self) -> str:
        return self.s3.base_path

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load complete configuration from environment variables.

        Returns:
            AppConfig with all sections populated from environment.

        Raises:
            ValueError: If a numeric setting cannot be parsed
        """
        return cls(
            s3=S3Config.from_env(),
            cassandra=CassandraConfig.from_env(),
            ssh=SshConfig.from_env(),
            backup=BackupConfig.from_env(),
            restore=RestoreConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.cassandra.keyspace:
            raise ValueError("CASSANDRA_KEYSPACE is required")
        if "/" in self.cassandra.keyspace:
            raise ValueError(f"Invalid keyspace '{self.cassandra.keyspace}'")
        if not self.s3.bucket:
            raise ValueError("S3_BUCKET is required")
        if not self.cassandra.hosts and not self.cassandra.seed_host:
            raise ValueError("CASSANDRA_HOSTS or CASSANDRA_SEED_HOST is required")
        if self.backup.max_parallel_hosts < 1:
            raise ValueError("BACKUP_MAX_PARALLEL_HOSTS must be at least 1")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Configuration loaded",
            extra={
                "keyspace": self.cassandra.keyspace,
                "hosts": list(self.cassandra.hosts) or None,
                "seed_host": self.cassandra.seed_host if not self.cassandra.hosts else None,
                "s3_bucket": self.s3.bucket,
                "s3_base_path": self.s3.base_path,
                "s3_endpoint": self.s3.endpoint_url,
                "incremental": self.backup.incremental,
                "max_parallel_hosts": self.backup.max_parallel_hosts,
                "temp_dir": self.backup.temp_dir,
                "log_level": self.observability.log_level,
            },
        )
