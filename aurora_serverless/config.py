"""Serverless cluster configuration dataclass.

Holds everything the cluster builder needs to declare an Aurora Serverless
cluster.  The builder never mutates a config; the same config always yields
the same template.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from aurora_serverless.cfn_template import RemovalPolicy
from aurora_serverless.credentials import Credentials
from aurora_serverless.engine import ClusterEngine, ParameterGroup
from aurora_serverless.network import SecurityGroup, SubnetGroup, SubnetSelection, Vpc
from aurora_serverless.scaling import ServerlessScalingOptions
from aurora_serverless.secrets import EncryptionKey


def _default_tags() -> dict[str, str]:
    return {"cost-center": "global"}


@dataclass
class ServerlessClusterConfig:
    """Configuration for an Aurora Serverless cluster.

    Attributes:
        engine: Engine to run.
        vpc: VPC the cluster lives in.
        credentials: Master user; defaults to ``admin`` with a generated
            secret.
        cluster_identifier: Physical identifier; generated by the provider
            when unset.
        backup_retention: How long automatic snapshots are kept (whole days,
            zero disables backups).
        default_database_name: Database created inside the cluster.
        deletion_protection: Left to the provider default when unset.
        enable_http_endpoint: Data API; rendered ``false`` when unset.
        vpc_subnets: Subnet selection inside ``vpc``.
        scaling: Capacity range and auto-pause.
        removal_policy: Deletion/replace policy for the cluster.
        security_groups: Existing groups; one is created when unset.
        storage_encryption_key: KMS key; the account default key otherwise.
        parameter_group: Cluster parameter group; engine default otherwise.
        subnet_group: Existing subnet group; one is created when unset.
        tags: Tags on every declared resource (``cost-center`` always set).
    """

    engine: ClusterEngine
    vpc: Vpc
    credentials: Optional[Credentials] = None
    cluster_identifier: Optional[str] = None
    backup_retention: Optional[timedelta] = None
    default_database_name: Optional[str] = None
    deletion_protection: Optional[bool] = None
    enable_http_endpoint: Optional[bool] = None
    vpc_subnets: Optional[SubnetSelection] = None
    scaling: Optional[ServerlessScalingOptions] = None
    removal_policy: Optional[RemovalPolicy] = None
    security_groups: Optional[list[SecurityGroup]] = None
    storage_encryption_key: Optional[EncryptionKey] = None
    parameter_group: Optional[ParameterGroup] = None
    subnet_group: Optional[SubnetGroup] = None
    tags: dict[str, str] = field(default_factory=_default_tags)

    def __post_init__(self) -> None:
        # Copy so the caller's mapping is never modified.
        self.tags = {**_default_tags(), **self.tags}
        if isinstance(self.removal_policy, str):
            self.removal_policy = RemovalPolicy(self.removal_policy)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerlessClusterConfig:
        """Build a config from a plain dict of already-typed values."""
        known_fields = {f.name for f in cls.__dataclass_fields__.values()}  # type: ignore[attr-defined]
        filtered = {k: v for k, v in data.items() if k in known_fields}
        return cls(**filtered)
