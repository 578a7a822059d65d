"""Tests for clusters imported from known attributes."""

import pytest

from aurora_serverless.cluster import (
    ClusterState,
    ImportedServerlessCluster,
    ServerlessCluster,
    ServerlessClusterAttributes,
)
from aurora_serverless.endpoint import Endpoint
from aurora_serverless.errors import PreconditionError
from aurora_serverless.network import SecurityGroup


class TestImportedCluster:
    def test_endpoint_requires_address_and_port(self):
        cluster = ServerlessCluster.from_serverless_cluster_attributes(
            ServerlessClusterAttributes(cluster_identifier="existing")
        )
        assert isinstance(cluster, ImportedServerlessCluster)
        with pytest.raises(PreconditionError, match="cluster_endpoint"):
            cluster.cluster_endpoint
        with pytest.raises(PreconditionError, match="cluster_read_endpoint"):
            cluster.cluster_read_endpoint

    def test_address_without_port(self):
        cluster = ServerlessCluster.from_serverless_cluster_attributes(
            ServerlessClusterAttributes(
                cluster_identifier="existing",
                cluster_endpoint_address="db.example.com",
            )
        )
        with pytest.raises(PreconditionError):
            cluster.cluster_endpoint

    def test_endpoints_with_address_and_port(self):
        cluster = ServerlessCluster.from_serverless_cluster_attributes(
            ServerlessClusterAttributes(
                cluster_identifier="existing",
                port=3306,
                cluster_endpoint_address="db.example.com",
                reader_endpoint_address="db-ro.example.com",
            )
        )
        assert cluster.cluster_endpoint == Endpoint("db.example.com", 3306)
        assert cluster.cluster_read_endpoint == Endpoint("db-ro.example.com", 3306)

    def test_capabilities(self):
        sg = SecurityGroup.from_security_group_id("sg-1")
        cluster = ServerlessCluster.from_serverless_cluster_attributes(
            ServerlessClusterAttributes(
                cluster_identifier="existing", port=5432, security_groups=[sg]
            )
        )
        assert cluster.cluster_identifier == "existing"
        assert cluster.state == ClusterState.ATTRIBUTES_KNOWN
        assert cluster.secret is None
        assert cluster.connections.security_groups == [sg]
        assert cluster.connections.default_port.to_port == 5432
        assert cluster.as_secret_attachment_target().target_id == "existing"

    def test_no_port_no_default_port(self):
        cluster = ServerlessCluster.from_serverless_cluster_attributes(
            ServerlessClusterAttributes(cluster_identifier="existing")
        )
        assert cluster.connections.default_port is None
