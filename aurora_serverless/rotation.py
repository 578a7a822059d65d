"""Credential rotation for serverless clusters.

A rotation job deploys the engine's Secrets Manager rotation application
into the cluster's VPC, lets it reach the cluster on the default port and
schedules it on the secret.  Single-user rotation rotates the attached
master secret in place; multi-user rotation rotates another user's secret
and uses the attached secret as the master secret.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Optional

from aurora_serverless.cfn_template import (
    SERVERLESS_TRANSFORM,
    TemplateDocument,
    get_att,
    sanitize_logical_id,
)
from aurora_serverless.engine import RotationApplication
from aurora_serverless.errors import (
    AlreadyExistsError,
    ConfigurationError,
    PreconditionError,
)
from aurora_serverless.network import (
    Connections,
    SecurityGroup,
    SubnetSelection,
    Vpc,
    declare_security_group,
)
from aurora_serverless.secrets import Secret

logger = logging.getLogger(__name__)

DEFAULT_ROTATION_INTERVAL = timedelta(days=30)
MAX_ROTATION_DAYS = 1000
SINGLE_USER_ROTATION_ID = "RotationSingleUser"

_SECRETS_MANAGER_ENDPOINT = {
    "Fn::Sub": "https://secretsmanager.${AWS::Region}.${AWS::URLSuffix}"
}
_FUNCTION_NAME_MAX = 64


class RotationKind(str, Enum):
    SINGLE_USER = "single-user"
    MULTI_USER = "multi-user"


@dataclass(frozen=True)
class MultiUserRotationOptions:
    """The user secret to rotate and how often."""

    secret: Secret
    automatically_after: Optional[timedelta] = None


@dataclass
class RotationJob:
    """A scheduled rotation declared in a template."""

    kind: RotationKind
    rotation_id: str
    secret: Secret
    application: RotationApplication
    target: Any
    automatically_after: timedelta
    vpc: Vpc
    vpc_subnets: Optional[SubnetSelection]
    security_group: SecurityGroup
    master_secret: Optional[Secret] = None
    resource_ids: list[str] = field(default_factory=list)

    @property
    def automatically_after_days(self) -> int:
        return self.automatically_after.days


def _rotation_days(interval: timedelta) -> int:
    seconds = interval.total_seconds()
    if seconds % 86400 or not 1 <= interval.days <= MAX_ROTATION_DAYS:
        raise ConfigurationError(
            f"Rotation interval must be a whole number of days between 1 and "
            f"{MAX_ROTATION_DAYS}, got {interval}"
        )
    return interval.days


class RotationManager:
    """Attaches rotation jobs to clusters declared in one template.

    Keeps a registry of (cluster, kind) pairs so a cluster gets at most one
    single-user rotation.
    """

    def __init__(self, document: TemplateDocument) -> None:
        self.document = document
        self._registry: set[tuple[str, RotationKind]] = set()
        self.jobs: list[RotationJob] = []

    def _check_cluster(self, cluster: Any, kind: RotationKind) -> Secret:
        secret = cluster.secret
        if secret is None:
            raise PreconditionError(
                f"Cannot add {kind.value} rotation for a cluster without secret."
            )
        if getattr(cluster, "document", None) is not self.document:
            raise PreconditionError(
                f"Cluster {cluster!r} is not declared in this manager's template"
            )
        return secret

    def has_rotation(self, cluster: Any, kind: RotationKind) -> bool:
        return (cluster.logical_id, kind) in self._registry

    def add_single_user_rotation(
        self, cluster: Any, automatically_after: Optional[timedelta] = None
    ) -> RotationJob:
        """Rotate the cluster's master secret.

        Args:
            cluster: A cluster from ``build_serverless_cluster``.
            automatically_after: Time between rotations (default 30 days).

        Raises:
            PreconditionError: If the cluster has no attached secret.
            AlreadyExistsError: If a single-user rotation already exists.
        """
        secret = self._check_cluster(cluster, RotationKind.SINGLE_USER)
        if self.has_rotation(cluster, RotationKind.SINGLE_USER):
            raise AlreadyExistsError(
                "A single user rotation was already added to this cluster."
            )

        job = self._declare(
            cluster,
            kind=RotationKind.SINGLE_USER,
            rotation_id=SINGLE_USER_ROTATION_ID,
            secret=secret,
            master_secret=None,
            application=cluster.engine.single_user_rotation_application,
            automatically_after=automatically_after,
        )
        self._registry.add((cluster.logical_id, RotationKind.SINGLE_USER))
        return job

    def add_multi_user_rotation(
        self, cluster: Any, rotation_id: str, options: MultiUserRotationOptions
    ) -> RotationJob:
        """Rotate ``options.secret`` using the cluster's secret as master.

        Raises:
            PreconditionError: If the cluster has no attached secret.
            AlreadyExistsError: If ``rotation_id`` is already used in the
                template.
        """
        master_secret = self._check_cluster(cluster, RotationKind.MULTI_USER)
        if options.secret is None:
            raise PreconditionError("Multi user rotation requires a user secret")
        sanitized = sanitize_logical_id(rotation_id)
        if not sanitized:
            raise ValueError(f"Rotation id {rotation_id!r} has no alphanumeric characters")

        job = self._declare(
            cluster,
            kind=RotationKind.MULTI_USER,
            rotation_id=sanitized,
            secret=options.secret,
            master_secret=master_secret,
            application=cluster.engine.multi_user_rotation_application,
            automatically_after=options.automatically_after,
        )
        self._registry.add((cluster.logical_id, RotationKind.MULTI_USER))
        return job

    def _declare(
        self,
        cluster: Any,
        kind: RotationKind,
        rotation_id: str,
        secret: Secret,
        master_secret: Optional[Secret],
        application: RotationApplication,
        automatically_after: Optional[timedelta],
    ) -> RotationJob:
        interval = (
            DEFAULT_ROTATION_INTERVAL if automatically_after is None else automatically_after
        )
        days = _rotation_days(interval)
        base_id = f"{cluster.logical_id}{rotation_id}"
        document = self.document

        # Fail before declaring anything if the id is taken.
        for suffix in ("SecurityGroup", "Application", "Schedule"):
            if f"{base_id}{suffix}" in document:
                raise AlreadyExistsError(
                    f"A rotation with id {rotation_id!r} already exists on "
                    f"{cluster.logical_id}"
                )

        security_group = declare_security_group(
            document,
            f"{base_id}SecurityGroup",
            cluster.vpc,
            f"Rotation function for {cluster.logical_id}",
        )
        ingress_ids = cluster.connections.allow_default_port_from(
            Connections([security_group]),
            document,
            f"{base_id}",
            description=f"from {base_id}SecurityGroup:default port",
        )

        subnets = cluster.vpc.select_subnets(cluster.vpc_subnets)
        parameters: dict[str, Any] = {
            "endpoint": _SECRETS_MANAGER_ENDPOINT,
            "functionName": base_id[:_FUNCTION_NAME_MAX],
            "vpcSubnetIds": ",".join(s.subnet_id for s in subnets),
            "vpcSecurityGroupIds": security_group.security_group_id,
        }
        if master_secret is not None:
            parameters["masterSecretArn"] = master_secret.secret_arn
            if master_secret.encryption_key is not None:
                parameters["masterSecretKmsKeyArn"] = master_secret.encryption_key.key_arn
        if secret.encryption_key is not None:
            parameters["kmsKeyArn"] = secret.encryption_key.key_arn

        application_id = f"{base_id}Application"
        document.add_transform(SERVERLESS_TRANSFORM)
        document.add_resource(
            application_id,
            "AWS::Serverless::Application",
            {
                "Location": {
                    "ApplicationId": application.application_id,
                    "SemanticVersion": application.semantic_version,
                },
                "Parameters": parameters,
            },
        )

        schedule_id = f"{base_id}Schedule"
        document.add_resource(
            schedule_id,
            "AWS::SecretsManager::RotationSchedule",
            {
                "SecretId": secret.secret_arn,
                "RotationLambdaARN": get_att(application_id, "Outputs.RotationLambdaARN"),
                "RotationRules": {"AutomaticallyAfterDays": days},
            },
        )

        job = RotationJob(
            kind=kind,
            rotation_id=rotation_id,
            secret=secret,
            application=application,
            target=cluster,
            automatically_after=interval,
            vpc=cluster.vpc,
            vpc_subnets=cluster.vpc_subnets,
            security_group=security_group,
            master_secret=master_secret,
            resource_ids=[
                security_group.logical_id,
                *ingress_ids,
                application_id,
                schedule_id,
            ],
        )
        self.jobs.append(job)
        logger.info(
            "Declared %s rotation %s for %s every %d day(s)",
            kind.value,
            rotation_id,
            cluster.logical_id,
            days,
        )
        return job
