"""Tests for the Endpoint value type."""

import pytest

from aurora_serverless.cfn_template import get_att
from aurora_serverless.endpoint import Endpoint


class TestEndpoint:
    def test_socket_address(self):
        ep = Endpoint("db.cluster-xyz.us-west-2.rds.amazonaws.com", 5432)
        assert ep.resolved
        assert ep.socket_address == "db.cluster-xyz.us-west-2.rds.amazonaws.com:5432"

    @pytest.mark.parametrize("port", [0, 65536, -1])
    def test_rejects_out_of_range_port(self, port):
        with pytest.raises(ValueError, match="range"):
            Endpoint("host", port)

    @pytest.mark.parametrize("port", ["5432", 5432.0, True])
    def test_rejects_non_integer_port(self, port):
        with pytest.raises(ValueError, match="integer"):
            Endpoint("host", port)

    def test_token_port_is_accepted(self):
        port = get_att("Database", "Endpoint.Port")
        ep = Endpoint(get_att("Database", "Endpoint.Address"), port)
        assert not ep.resolved
        assert ep.socket_address == {
            "Fn::Join": [
                "",
                [get_att("Database", "Endpoint.Address"), ":", port],
            ]
        }

    def test_is_hashable_value(self):
        assert Endpoint("h", 1) == Endpoint("h", 1)
        assert len({Endpoint("h", 1), Endpoint("h", 1)}) == 1
