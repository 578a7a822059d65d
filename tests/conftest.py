"""Pytest configuration for aurora-serverless tests."""

import pytest

from aurora_serverless.cfn_template import TemplateDocument
from aurora_serverless.config import ServerlessClusterConfig
from aurora_serverless.engine import ClusterEngine
from aurora_serverless.network import Subnet, SubnetType, Vpc


@pytest.fixture()
def vpc():
    """A VPC with three private subnets and one public subnet."""
    return Vpc(
        vpc_id="vpc-0abc",
        subnets=[
            Subnet("subnet-a", "us-west-2a"),
            Subnet("subnet-b", "us-west-2b"),
            Subnet("subnet-c", "us-west-2c"),
            Subnet("subnet-pub", "us-west-2a", SubnetType.PUBLIC),
        ],
    )


@pytest.fixture()
def single_subnet_vpc():
    return Vpc(vpc_id="vpc-0one", subnets=[Subnet("subnet-only", "us-west-2a")])


@pytest.fixture()
def document():
    return TemplateDocument()


@pytest.fixture()
def postgres_config(vpc):
    """Minimal Aurora PostgreSQL config: username ``admin``, generated secret."""
    return ServerlessClusterConfig(
        engine=ClusterEngine.aurora_postgres("10.14"),
        vpc=vpc,
    )
