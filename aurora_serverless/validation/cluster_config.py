"""Structured validation for cluster definition files.

A definition file is YAML (or JSON, which is valid YAML) describing one
serverless cluster and, optionally, its rotations::

    engine: {name: aurora-postgresql, version: "10.14"}
    vpc:
      vpc_id: vpc-0abc
      subnets:
        - {subnet_id: subnet-a, availability_zone: us-west-2a}
        - {subnet_id: subnet-b, availability_zone: us-west-2b}
    credentials: {username: admin}
    scaling: {min_capacity: 2, max_capacity: 8, auto_pause_seconds: 0}
    rotation:
      single_user: {automatically_after_days: 30}

This module only checks shape and types.  Semantic checks (subnet count,
capacity range) belong to the cluster builder so they are reported together.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from aurora_serverless.cfn_template import RemovalPolicy
from aurora_serverless.config import ServerlessClusterConfig
from aurora_serverless.credentials import Credentials
from aurora_serverless.engine import KNOWN_ENGINES, ClusterEngine, ParameterGroup
from aurora_serverless.network import (
    SecurityGroup,
    Subnet,
    SubnetGroup,
    SubnetSelection,
    SubnetType,
    Vpc,
    lookup_vpc,
)
from aurora_serverless.scaling import ServerlessScalingOptions
from aurora_serverless.secrets import EncryptionKey, Secret


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class EngineModel(_Strict):
    name: str
    version: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _validate_name(cls, v: str) -> str:
        if v not in KNOWN_ENGINES:
            raise ValueError(f"engine must be one of {', '.join(KNOWN_ENGINES)}")
        return v


class SubnetModel(_Strict):
    subnet_id: str
    availability_zone: str = ""
    subnet_type: SubnetType = SubnetType.PRIVATE


class VpcModel(_Strict):
    vpc_id: str = ""
    subnets: list[SubnetModel] = Field(default_factory=list)
    lookup: bool = False

    @model_validator(mode="after")
    def _validate_source(self) -> VpcModel:
        if not self.lookup and not self.vpc_id:
            raise ValueError("vpc_id is required unless lookup is true")
        return self


class SubnetSelectionModel(_Strict):
    subnet_type: Optional[SubnetType] = None
    subnet_ids: list[str] = Field(default_factory=list)
    availability_zones: list[str] = Field(default_factory=list)
    one_per_az: bool = False


class CredentialsModel(_Strict):
    username: Optional[str] = None
    password: Optional[str] = None
    secret_arn: Optional[str] = None
    encryption_key_arn: Optional[str] = None
    exclude_characters: Optional[str] = None

    @model_validator(mode="after")
    def _validate_sources(self) -> CredentialsModel:
        if self.password is not None and self.secret_arn is not None:
            raise ValueError("give either password or secret_arn, not both")
        if self.secret_arn is None and not self.username:
            raise ValueError("username is required unless secret_arn is given")
        return self


class ScalingModel(_Strict):
    min_capacity: Optional[int] = None
    max_capacity: Optional[int] = None
    auto_pause_seconds: Optional[int] = None


class ParameterGroupModel(_Strict):
    name: Optional[str] = None
    family: Optional[str] = None
    parameters: dict[str, str] = Field(default_factory=dict)
    description: Optional[str] = None

    @model_validator(mode="after")
    def _validate_kind(self) -> ParameterGroupModel:
        if bool(self.name) == bool(self.family):
            raise ValueError("give exactly one of name (existing) or family (new)")
        return self


class SingleUserRotationModel(_Strict):
    automatically_after_days: Optional[int] = None


class MultiUserRotationModel(_Strict):
    id: str
    secret_arn: str
    automatically_after_days: Optional[int] = None


class RotationModel(_Strict):
    single_user: Optional[SingleUserRotationModel] = None
    multi_user: list[MultiUserRotationModel] = Field(default_factory=list)


class ClusterDefinition(_Strict):
    """One cluster definition file."""

    scope_id: str = "Database"
    engine: EngineModel
    vpc: VpcModel
    vpc_subnets: Optional[SubnetSelectionModel] = None
    credentials: Optional[CredentialsModel] = None
    cluster_identifier: Optional[str] = None
    backup_retention_days: Optional[int] = None
    default_database_name: Optional[str] = None
    deletion_protection: Optional[bool] = None
    enable_http_endpoint: Optional[bool] = None
    scaling: Optional[ScalingModel] = None
    removal_policy: Optional[RemovalPolicy] = None
    security_group_ids: Optional[list[str]] = None
    storage_encryption_key_arn: Optional[str] = None
    parameter_group: Optional[ParameterGroupModel] = None
    subnet_group_name: Optional[str] = None
    tags: dict[str, str] = Field(default_factory=dict)
    rotation: Optional[RotationModel] = None

    def _credentials(self) -> Optional[Credentials]:
        c = self.credentials
        if c is None:
            return None
        key = EncryptionKey(c.encryption_key_arn) if c.encryption_key_arn else None
        if c.secret_arn:
            return Credentials.from_secret(
                Secret.from_secret_arn(c.secret_arn, key), username=c.username
            )
        return Credentials.from_username(
            c.username,
            password=c.password,
            encryption_key=key,
            exclude_characters=c.exclude_characters,
        )

    def _vpc(self, ec2_client: Any = None) -> Vpc:
        if self.vpc.lookup:
            if ec2_client is None:
                raise ValueError("vpc.lookup requires an EC2 client")
            return lookup_vpc(ec2_client, self.vpc.vpc_id)
        return Vpc(
            vpc_id=self.vpc.vpc_id,
            subnets=[Subnet(**s.model_dump()) for s in self.vpc.subnets],
        )

    def to_config(self, ec2_client: Any = None) -> ServerlessClusterConfig:
        """Convert to the builder's config dataclass.

        Args:
            ec2_client: boto3 EC2 client, only needed when ``vpc.lookup``.
        """
        parameter_group = None
        if self.parameter_group is not None:
            pg = self.parameter_group
            parameter_group = (
                ParameterGroup.from_parameter_group_name(pg.name)
                if pg.name
                else ParameterGroup(
                    family=pg.family, parameters=pg.parameters, description=pg.description
                )
            )

        scaling = None
        if self.scaling is not None:
            pause = self.scaling.auto_pause_seconds
            scaling = ServerlessScalingOptions(
                min_capacity=self.scaling.min_capacity,
                max_capacity=self.scaling.max_capacity,
                auto_pause=timedelta(seconds=pause) if pause is not None else None,
            )

        return ServerlessClusterConfig(
            engine=ClusterEngine.from_name(self.engine.name, self.engine.version),
            vpc=self._vpc(ec2_client),
            credentials=self._credentials(),
            cluster_identifier=self.cluster_identifier,
            backup_retention=(
                timedelta(days=self.backup_retention_days)
                if self.backup_retention_days is not None
                else None
            ),
            default_database_name=self.default_database_name,
            deletion_protection=self.deletion_protection,
            enable_http_endpoint=self.enable_http_endpoint,
            vpc_subnets=(
                SubnetSelection(**self.vpc_subnets.model_dump())
                if self.vpc_subnets is not None
                else None
            ),
            scaling=scaling,
            removal_policy=self.removal_policy,
            security_groups=(
                [SecurityGroup.from_security_group_id(i) for i in self.security_group_ids]
                if self.security_group_ids is not None
                else None
            ),
            storage_encryption_key=(
                EncryptionKey(self.storage_encryption_key_arn)
                if self.storage_encryption_key_arn
                else None
            ),
            parameter_group=parameter_group,
            subnet_group=(
                SubnetGroup.from_subnet_group_name(self.subnet_group_name)
                if self.subnet_group_name
                else None
            ),
            tags=dict(self.tags),
        )


def validate_cluster_definition(value: Any) -> ClusterDefinition:
    """Validate a parsed definition (dict) and return the model."""
    return ClusterDefinition.model_validate(value or {})


def load_cluster_definition(path: str | Path) -> ClusterDefinition:
    """Read and validate a YAML/JSON definition file.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        pydantic.ValidationError: If the content has the wrong shape.
    """
    raw = Path(path).read_text(encoding="utf-8")
    return validate_cluster_definition(yaml.safe_load(raw))


def format_validation_error(e: ValidationError) -> str:
    """Return a compact, human-friendly error summary."""

    parts: list[str] = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", []) if p is not None)
        msg = err.get("msg", "invalid")
        if loc:
            parts.append(f"{loc}: {msg}")
        else:
            parts.append(str(msg))
    return "; ".join(parts) if parts else str(e)
