"""Validation of cluster definition files."""

from aurora_serverless.validation.cluster_config import (
    ClusterDefinition,
    format_validation_error,
    load_cluster_definition,
    validate_cluster_definition,
)

__all__ = [
    "ClusterDefinition",
    "format_validation_error",
    "load_cluster_definition",
    "validate_cluster_definition",
]
