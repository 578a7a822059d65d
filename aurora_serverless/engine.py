"""Engine and parameter-group descriptors.

These describe what the cluster builder needs to know about a database
engine: its CloudFormation engine type and version, the parameter group
family whose provider default is bound when no group is given, and the
serverless-repo applications that rotate its credentials.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from aurora_serverless.cfn_template import TemplateDocument, ref

_SERVERLESS_REPO_ARN = "arn:aws:serverlessrepo:us-east-1:297356227824:applications"
_ROTATION_APP_VERSION = "1.1.60"


@dataclass(frozen=True)
class RotationApplication:
    """A Secrets Manager rotation application from the serverless repo."""

    name: str
    semantic_version: str = _ROTATION_APP_VERSION

    @property
    def application_id(self) -> str:
        return f"{_SERVERLESS_REPO_ARN}/{self.name}"


MYSQL_ROTATION_SINGLE_USER = RotationApplication("SecretsManagerRDSMySQLRotationSingleUser")
MYSQL_ROTATION_MULTI_USER = RotationApplication("SecretsManagerRDSMySQLRotationMultiUser")
POSTGRES_ROTATION_SINGLE_USER = RotationApplication(
    "SecretsManagerRDSPostgreSQLRotationSingleUser"
)
POSTGRES_ROTATION_MULTI_USER = RotationApplication(
    "SecretsManagerRDSPostgreSQLRotationMultiUser"
)


@dataclass(frozen=True)
class ParameterGroup:
    """A cluster parameter group.

    Either declared by this package (``family`` + ``parameters``) or an
    existing group referenced by name (``from_parameter_group_name``).
    """

    family: Optional[str] = None
    parameters: dict[str, str] = field(default_factory=dict)
    description: Optional[str] = None
    parameter_group_name: Optional[str] = None

    @classmethod
    def from_parameter_group_name(cls, name: str) -> ParameterGroup:
        return cls(parameter_group_name=name)

    @property
    def imported(self) -> bool:
        return self.parameter_group_name is not None

    def bind_to_cluster(self, document: TemplateDocument, scope_id: str) -> Any:
        """Return the name to put on the cluster, declaring the group if needed."""
        if self.imported:
            return self.parameter_group_name

        logical_id = f"{scope_id}ParameterGroup"
        if logical_id not in document:
            document.add_resource(
                logical_id,
                "AWS::RDS::DBClusterParameterGroup",
                {
                    "Description": self.description
                    or f"Cluster parameter group for {self.family}",
                    "Family": self.family,
                    "Parameters": dict(self.parameters),
                },
            )
        return ref(logical_id)


@dataclass(frozen=True)
class EngineBindConfig:
    parameter_group: Optional[ParameterGroup] = None


@dataclass(frozen=True)
class ClusterEngine:
    """A database engine usable in serverless mode."""

    engine_type: str
    engine_version: Optional[str] = None
    parameter_group_family: Optional[str] = None
    single_user_rotation_application: RotationApplication = MYSQL_ROTATION_SINGLE_USER
    multi_user_rotation_application: RotationApplication = MYSQL_ROTATION_MULTI_USER

    def bind_to_cluster(
        self, parameter_group: Optional[ParameterGroup] = None
    ) -> EngineBindConfig:
        """Pick the parameter group for a cluster.

        The engine's provider default (``default.<family>``) is only used
        when the caller supplied none and the family is known.
        """
        if parameter_group is not None:
            return EngineBindConfig(parameter_group=parameter_group)
        if self.parameter_group_family:
            return EngineBindConfig(
                parameter_group=ParameterGroup.from_parameter_group_name(
                    f"default.{self.parameter_group_family}"
                )
            )
        return EngineBindConfig()

    # -- well-known engines -------------------------------------------------

    @classmethod
    def aurora(cls, version: Optional[str] = None) -> ClusterEngine:
        """Aurora MySQL 5.6 compatible."""
        return cls(
            engine_type="aurora",
            engine_version=version,
            parameter_group_family="aurora5.6" if version else None,
        )

    @classmethod
    def aurora_mysql(cls, version: Optional[str] = None) -> ClusterEngine:
        """Aurora MySQL 5.7 compatible (e.g. ``5.7.mysql_aurora.2.08.3``)."""
        family = None
        if version:
            family = f"aurora-mysql{'.'.join(version.split('.')[:2])}"
        return cls(
            engine_type="aurora-mysql",
            engine_version=version,
            parameter_group_family=family,
        )

    @classmethod
    def aurora_postgres(cls, version: Optional[str] = None) -> ClusterEngine:
        """Aurora PostgreSQL (e.g. ``10.14``)."""
        family = f"aurora-postgresql{version.split('.')[0]}" if version else None
        return cls(
            engine_type="aurora-postgresql",
            engine_version=version,
            parameter_group_family=family,
            single_user_rotation_application=POSTGRES_ROTATION_SINGLE_USER,
            multi_user_rotation_application=POSTGRES_ROTATION_MULTI_USER,
        )

    @classmethod
    def from_name(cls, name: str, version: Optional[str] = None) -> ClusterEngine:
        """Look up a well-known engine by its CloudFormation engine type."""
        factories = {
            "aurora": cls.aurora,
            "aurora-mysql": cls.aurora_mysql,
            "aurora-postgresql": cls.aurora_postgres,
        }
        try:
            factory = factories[name]
        except KeyError:
            raise ValueError(
                f"Unknown engine {name!r}; expected one of {sorted(factories)}"
            ) from None
        return factory(version)


KNOWN_ENGINES = ("aurora", "aurora-mysql", "aurora-postgresql")
