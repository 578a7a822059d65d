"""Aurora Serverless cluster resource model.

Declares Aurora Serverless clusters (and their subnet group, security group,
master secret and rotation) as CloudFormation templates, and deploys them.
"""

from aurora_serverless.cfn_template import RemovalPolicy, TemplateDocument
from aurora_serverless.cluster import (
    BuildResult,
    ClusterState,
    ImportedServerlessCluster,
    ServerlessCluster,
    ServerlessClusterAttributes,
    build_serverless_cluster,
)
from aurora_serverless.config import ServerlessClusterConfig
from aurora_serverless.credentials import Credentials, resolve_credentials
from aurora_serverless.endpoint import Endpoint
from aurora_serverless.engine import ClusterEngine, ParameterGroup
from aurora_serverless.errors import (
    AlreadyExistsError,
    AuroraServerlessError,
    ConfigurationError,
    PreconditionError,
)
from aurora_serverless.network import SecurityGroup, Subnet, SubnetSelection, SubnetType, Vpc
from aurora_serverless.rotation import MultiUserRotationOptions, RotationManager
from aurora_serverless.scaling import (
    AuroraCapacityUnit,
    ServerlessScalingOptions,
    render_scaling_configuration,
)
from aurora_serverless.secrets import EncryptionKey, Secret

__version__ = "0.1.0"

__all__ = [
    "AlreadyExistsError",
    "AuroraCapacityUnit",
    "AuroraServerlessError",
    "BuildResult",
    "ClusterEngine",
    "ClusterState",
    "ConfigurationError",
    "Credentials",
    "EncryptionKey",
    "Endpoint",
    "ImportedServerlessCluster",
    "MultiUserRotationOptions",
    "ParameterGroup",
    "PreconditionError",
    "RemovalPolicy",
    "RotationManager",
    "Secret",
    "SecurityGroup",
    "ServerlessCluster",
    "ServerlessClusterAttributes",
    "ServerlessClusterConfig",
    "ServerlessScalingOptions",
    "Subnet",
    "SubnetSelection",
    "SubnetType",
    "TemplateDocument",
    "Vpc",
    "build_serverless_cluster",
    "render_scaling_configuration",
    "resolve_credentials",
]
