"""Aurora Serverless cluster: builder, owned cluster, imported cluster.

``build_serverless_cluster`` resolves a ``ServerlessClusterConfig`` into an
``AWS::RDS::DBCluster`` declaration (plus its subnet group, security group,
secret and attachment) and returns the owned ``ServerlessCluster`` handle.
``ServerlessCluster.from_serverless_cluster_attributes`` wraps a cluster that
already exists.  Both expose the same capability surface.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from aurora_serverless.cfn_template import (
    TemplateDocument,
    build_tags,
    get_att,
    ref,
    sanitize_logical_id,
)
from aurora_serverless.config import ServerlessClusterConfig
from aurora_serverless.credentials import resolve_credentials
from aurora_serverless.endpoint import Endpoint
from aurora_serverless.engine import ClusterEngine
from aurora_serverless.errors import ConfigurationError, PreconditionError
from aurora_serverless.network import (
    Connections,
    Port,
    SecurityGroup,
    SubnetGroup,
    SubnetSelection,
    Vpc,
    resolve_security_groups,
    resolve_subnet_group,
    resolve_subnets,
)
from aurora_serverless.scaling import render_scaling_configuration
from aurora_serverless.secrets import (
    AttachmentTargetType,
    Secret,
    SecretAttachmentTarget,
)

logger = logging.getLogger(__name__)

ENGINE_MODE = "serverless"
MIN_SUBNETS = 2


class ClusterState(str, Enum):
    UNBOUND = "unbound"
    PROVISIONED = "provisioned"
    ATTRIBUTES_KNOWN = "attributes-known"


class ServerlessClusterBase(ABC):
    """Capabilities shared by created and imported serverless clusters."""

    @property
    @abstractmethod
    def cluster_identifier(self) -> Any:
        """Identifier of the cluster."""

    @property
    @abstractmethod
    def cluster_endpoint(self) -> Endpoint:
        """Endpoint for read/write operations."""

    @property
    @abstractmethod
    def cluster_read_endpoint(self) -> Endpoint:
        """Endpoint for load-balanced read-only operations."""

    @property
    @abstractmethod
    def connections(self) -> Connections:
        """Security groups and default port."""

    @property
    @abstractmethod
    def state(self) -> ClusterState:
        """Where the handle is in its lifecycle."""

    @property
    def secret(self) -> Optional[Secret]:
        """The secret attached to this cluster, if any."""
        return None

    def as_secret_attachment_target(self) -> SecretAttachmentTarget:
        return SecretAttachmentTarget(
            target_id=self.cluster_identifier,
            target_type=AttachmentTargetType.RDS_DB_CLUSTER,
        )


# ---------------------------------------------------------------------------
# Owned cluster
# ---------------------------------------------------------------------------


class ServerlessCluster(ServerlessClusterBase):
    """A cluster declared by ``build_serverless_cluster``.

    Identifier and endpoints are CloudFormation tokens until
    ``bind_outputs`` is called with the created stack's outputs.
    """

    def __init__(
        self,
        logical_id: str,
        document: TemplateDocument,
        engine: ClusterEngine,
        vpc: Vpc,
        vpc_subnets: Optional[SubnetSelection],
        security_groups: list[SecurityGroup],
        subnet_group: SubnetGroup,
    ) -> None:
        self.logical_id = logical_id
        self.document = document
        self.engine = engine
        self.vpc = vpc
        self.vpc_subnets = vpc_subnets
        self.subnet_group = subnet_group

        port = get_att(logical_id, "Endpoint.Port")
        self._cluster_identifier: Any = ref(logical_id)
        self._cluster_endpoint = Endpoint(get_att(logical_id, "Endpoint.Address"), port)
        self._cluster_read_endpoint = Endpoint(
            get_att(logical_id, "ReadEndpoint.Address"), port
        )
        self._connections = Connections(security_groups, default_port=Port.tcp(port))
        self._secret: Optional[Secret] = None
        self._state = ClusterState.UNBOUND

    def __repr__(self) -> str:
        return f"ServerlessCluster({self.logical_id!r}, state={self._state.value})"

    @staticmethod
    def from_serverless_cluster_attributes(
        attrs: ServerlessClusterAttributes,
    ) -> ImportedServerlessCluster:
        """Import an existing serverless cluster from its known attributes."""
        return ImportedServerlessCluster(attrs)

    @property
    def cluster_identifier(self) -> Any:
        return self._cluster_identifier

    @property
    def cluster_endpoint(self) -> Endpoint:
        return self._cluster_endpoint

    @property
    def cluster_read_endpoint(self) -> Endpoint:
        return self._cluster_read_endpoint

    @property
    def connections(self) -> Connections:
        return self._connections

    @property
    def secret(self) -> Optional[Secret]:
        return self._secret

    @property
    def state(self) -> ClusterState:
        return self._state

    def output_key(self, name: str) -> str:
        """Stack output name this cluster uses for ``name``."""
        return f"{self.logical_id}{name}"

    def _declare_outputs(self) -> None:
        d = self.document
        d.add_output(self.output_key("ClusterIdentifier"), self._cluster_identifier)
        d.add_output(
            self.output_key("ClusterEndpointAddress"),
            self._cluster_endpoint.hostname,
            "Writer endpoint address",
        )
        d.add_output(self.output_key("ClusterEndpointPort"), self._cluster_endpoint.port)
        d.add_output(
            self.output_key("ClusterReadEndpointAddress"),
            self._cluster_read_endpoint.hostname,
            "Reader endpoint address",
        )
        if self._secret is not None:
            d.add_output(self.output_key("SecretArn"), self._secret.secret_arn)

    def bind_outputs(self, outputs: dict[str, str]) -> None:
        """Replace tokens with the values the provisioning engine returned.

        Raises:
            PreconditionError: If an expected output is missing.
        """
        required = (
            "ClusterIdentifier",
            "ClusterEndpointAddress",
            "ClusterEndpointPort",
            "ClusterReadEndpointAddress",
        )
        missing = [name for name in required if self.output_key(name) not in outputs]
        if missing:
            raise PreconditionError(
                f"Stack outputs for {self.logical_id} are missing: {', '.join(missing)}"
            )

        port = int(outputs[self.output_key("ClusterEndpointPort")])
        self._cluster_identifier = outputs[self.output_key("ClusterIdentifier")]
        self._cluster_endpoint = Endpoint(
            outputs[self.output_key("ClusterEndpointAddress")], port
        )
        self._cluster_read_endpoint = Endpoint(
            outputs[self.output_key("ClusterReadEndpointAddress")], port
        )
        self._connections = Connections(
            self._connections.security_groups, default_port=Port.tcp(port)
        )
        self._state = ClusterState.PROVISIONED
        logger.info(
            "Cluster %s provisioned at %s",
            self._cluster_identifier,
            self._cluster_endpoint.socket_address,
        )


# ---------------------------------------------------------------------------
# Imported cluster
# ---------------------------------------------------------------------------


@dataclass
class ServerlessClusterAttributes:
    """What is known about an existing cluster."""

    cluster_identifier: str
    port: Optional[int] = None
    security_groups: list[SecurityGroup] = field(default_factory=list)
    cluster_endpoint_address: Optional[str] = None
    reader_endpoint_address: Optional[str] = None


class ImportedServerlessCluster(ServerlessClusterBase):
    """A cluster that exists outside this template.

    Endpoints are only available when both the address and port were
    supplied; asking for a missing one raises ``PreconditionError``.
    """

    def __init__(self, attrs: ServerlessClusterAttributes) -> None:
        self._cluster_identifier = attrs.cluster_identifier
        default_port = Port.tcp(attrs.port) if attrs.port else None
        self._connections = Connections(attrs.security_groups, default_port=default_port)

        self._cluster_endpoint: Optional[Endpoint] = None
        if attrs.cluster_endpoint_address and attrs.port:
            self._cluster_endpoint = Endpoint(attrs.cluster_endpoint_address, attrs.port)

        self._cluster_read_endpoint: Optional[Endpoint] = None
        if attrs.reader_endpoint_address and attrs.port:
            self._cluster_read_endpoint = Endpoint(attrs.reader_endpoint_address, attrs.port)

    def __repr__(self) -> str:
        return f"ImportedServerlessCluster({self._cluster_identifier!r})"

    @property
    def cluster_identifier(self) -> str:
        return self._cluster_identifier

    @property
    def cluster_endpoint(self) -> Endpoint:
        if self._cluster_endpoint is None:
            raise PreconditionError(
                "Cannot access `cluster_endpoint` of an imported cluster "
                "without an endpoint address and port"
            )
        return self._cluster_endpoint

    @property
    def cluster_read_endpoint(self) -> Endpoint:
        if self._cluster_read_endpoint is None:
            raise PreconditionError(
                "Cannot access `cluster_read_endpoint` of an imported cluster "
                "without a reader endpoint address and port"
            )
        return self._cluster_read_endpoint

    @property
    def connections(self) -> Connections:
        return self._connections

    @property
    def state(self) -> ClusterState:
        return ClusterState.ATTRIBUTES_KNOWN


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


@dataclass
class BuildResult:
    """Outcome of ``build_serverless_cluster``.

    ``cluster`` and ``document`` are always present; ``errors`` lists the
    configuration problems found, which make the template invalid to deploy.
    """

    cluster: ServerlessCluster
    document: TemplateDocument
    errors: list[ConfigurationError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        if self.errors:
            raise ConfigurationError("; ".join(str(e) for e in self.errors))


def _backup_retention_days(config: ServerlessClusterConfig) -> Optional[int]:
    retention = config.backup_retention
    if retention is None:
        return None
    if retention.total_seconds() < 0 or retention.total_seconds() % 86400:
        raise ConfigurationError(
            f"backup_retention must be a non-negative whole number of days, got {retention}"
        )
    return retention.days


def _removal_policies(config: ServerlessClusterConfig) -> tuple[Optional[str], str]:
    if config.removal_policy is None:
        # DeletionPolicy already defaults to Snapshot for clusters.
        return None, "Snapshot"
    policy = config.removal_policy.deletion_policy
    return policy, policy


def build_serverless_cluster(
    config: ServerlessClusterConfig,
    document: Optional[TemplateDocument] = None,
    scope_id: str = "Database",
) -> BuildResult:
    """Declare an Aurora Serverless cluster for ``config``.

    Configuration problems (fewer than two subnets, bad scaling or backup
    values) are collected on the result; the template is still produced.
    Duplicate logical ids raise ``AlreadyExistsError`` straight away.

    Args:
        config: The cluster definition.  Not modified.
        document: Template to declare into; a fresh one by default.
        scope_id: Prefix for every logical id declared for this cluster.

    Raises:
        ConfigurationError: If ``config`` has no engine or VPC.
        AlreadyExistsError: If ``scope_id`` collides with existing resources.
    """
    if config.engine is None or config.vpc is None:
        raise ConfigurationError("A serverless cluster needs an engine and a VPC")

    document = document if document is not None else TemplateDocument()
    logical_id = sanitize_logical_id(scope_id)
    if not logical_id:
        raise ValueError(f"scope_id {scope_id!r} has no alphanumeric characters")
    errors: list[ConfigurationError] = []

    subnets = resolve_subnets(config.vpc, config.vpc_subnets)
    if len(subnets) < MIN_SUBNETS:
        errors.append(
            ConfigurationError(
                f"Cluster requires at least {MIN_SUBNETS} subnets, got {len(subnets)}"
            )
        )

    subnet_group = resolve_subnet_group(
        document,
        logical_id,
        subnets,
        supplied=config.subnet_group,
        removal_policy=config.removal_policy,
        tags=config.tags,
    )

    credentials = resolve_credentials(
        config.credentials, document, logical_id, tags=config.tags
    )

    bind_config = config.engine.bind_to_cluster(config.parameter_group)
    parameter_group_name = None
    if bind_config.parameter_group is not None:
        parameter_group_name = bind_config.parameter_group.bind_to_cluster(
            document, logical_id
        )

    security_groups = resolve_security_groups(
        document,
        logical_id,
        config.vpc,
        supplied=config.security_groups,
        tags=config.tags,
    )

    scaling_configuration = None
    if config.scaling is not None:
        try:
            scaling_configuration = render_scaling_configuration(config.scaling)
        except ConfigurationError as exc:
            errors.append(exc)

    backup_retention_days = None
    try:
        backup_retention_days = _backup_retention_days(config)
    except ConfigurationError as exc:
        errors.append(exc)

    deletion_policy, update_replace_policy = _removal_policies(config)
    key = config.storage_encryption_key
    document.add_resource(
        logical_id,
        "AWS::RDS::DBCluster",
        {
            "BackupRetentionPeriod": backup_retention_days,
            "DatabaseName": config.default_database_name,
            "DBClusterIdentifier": config.cluster_identifier,
            "DBClusterParameterGroupName": parameter_group_name,
            "DBSubnetGroupName": subnet_group.subnet_group_name,
            "DeletionProtection": config.deletion_protection,
            "Engine": config.engine.engine_type,
            "EngineVersion": config.engine.engine_version,
            "EngineMode": ENGINE_MODE,
            "EnableHttpEndpoint": bool(config.enable_http_endpoint),
            "KmsKeyId": key.key_arn if key is not None else None,
            "MasterUsername": credentials.username,
            "MasterUserPassword": credentials.password,
            "ScalingConfiguration": scaling_configuration,
            "StorageEncrypted": True,
            "VpcSecurityGroupIds": [sg.security_group_id for sg in security_groups],
            "Tags": build_tags(config.tags),
        },
        deletion_policy=deletion_policy,
        update_replace_policy=update_replace_policy,
    )
    logger.info(
        "Declared serverless cluster %s (engine=%s)",
        logical_id,
        config.engine.engine_type,
    )

    cluster = ServerlessCluster(
        logical_id=logical_id,
        document=document,
        engine=config.engine,
        vpc=config.vpc,
        vpc_subnets=config.vpc_subnets,
        security_groups=security_groups,
        subnet_group=subnet_group,
    )

    if credentials.secret is not None:
        cluster._secret = credentials.secret.attach(
            cluster, document, f"{logical_id}Secret"
        )

    cluster._declare_outputs()

    for error in errors:
        logger.warning("Configuration error in %s: %s", logical_id, error)

    return BuildResult(cluster=cluster, document=document, errors=errors)
