"""Tests for the CloudFormation template document and helpers."""

from __future__ import annotations

import json

import pytest

from aurora_serverless.cfn_template import (
    SERVERLESS_TRANSFORM,
    RemovalPolicy,
    TemplateDocument,
    build_tags,
    dynamic_secret_reference,
    get_att,
    is_token,
    ref,
    sanitize_logical_id,
    save_template,
)
from aurora_serverless.errors import AlreadyExistsError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestTokens:
    def test_ref_and_get_att_are_tokens(self):
        assert is_token(ref("Database"))
        assert is_token(get_att("Database", "Endpoint.Port"))

    @pytest.mark.parametrize("value", ["literal", 5432, {"Ref": "A", "x": 1}, {}, None])
    def test_plain_values_are_not_tokens(self, value):
        assert not is_token(value)

    def test_dynamic_reference_for_literal_arn(self):
        arn = "arn:aws:secretsmanager:us-west-2:123:secret:db"
        assert dynamic_secret_reference(arn, "password") == (
            "{{resolve:secretsmanager:arn:aws:secretsmanager:us-west-2:123:secret:db"
            ":SecretString:password::}}"
        )

    def test_dynamic_reference_for_token_arn(self):
        value = dynamic_secret_reference(ref("DatabaseSecret"), "username")
        assert value == {
            "Fn::Join": [
                "",
                [
                    "{{resolve:secretsmanager:",
                    {"Ref": "DatabaseSecret"},
                    ":SecretString:username::}}",
                ],
            ]
        }

    def test_sanitize_logical_id(self):
        assert sanitize_logical_id("my-db_1 cluster") == "mydb1cluster"


class TestTags:
    def test_cost_center_always_present(self):
        assert build_tags() == [{"Key": "cost-center", "Value": "global"}]

    def test_tags_sorted_and_override(self):
        tags = build_tags({"team": "data", "cost-center": "research"})
        assert tags == [
            {"Key": "cost-center", "Value": "research"},
            {"Key": "team", "Value": "data"},
        ]


class TestRemovalPolicy:
    @pytest.mark.parametrize(
        "policy, expected",
        [
            (RemovalPolicy.DESTROY, "Delete"),
            (RemovalPolicy.RETAIN, "Retain"),
            (RemovalPolicy.SNAPSHOT, "Snapshot"),
        ],
    )
    def test_deletion_policy(self, policy, expected):
        assert policy.deletion_policy == expected


# ---------------------------------------------------------------------------
# TemplateDocument
# ---------------------------------------------------------------------------


class TestTemplateDocument:
    def test_add_resource_drops_unset_properties(self, document):
        resource = document.add_resource(
            "Thing", "AWS::X::Y", {"A": 1, "B": None, "C": False}
        )
        assert resource["Properties"] == {"A": 1, "C": False}
        assert "Thing" in document

    def test_policies_and_depends_on(self, document):
        resource = document.add_resource(
            "Thing",
            "AWS::X::Y",
            {},
            deletion_policy="Retain",
            update_replace_policy="Snapshot",
            depends_on=["Other"],
        )
        assert resource["DeletionPolicy"] == "Retain"
        assert resource["UpdateReplacePolicy"] == "Snapshot"
        assert resource["DependsOn"] == ["Other"]

    def test_duplicate_logical_id_raises(self, document):
        document.add_resource("Thing", "AWS::X::Y", {})
        with pytest.raises(AlreadyExistsError, match="Thing"):
            document.add_resource("Thing", "AWS::X::Y", {})

    def test_secret_attachment_registry(self, document):
        arn = {"Ref": "DatabaseSecret"}
        assert document.secret_attachment(arn) is None
        document.record_secret_attachment(arn, "DatabaseSecretAttachment")
        assert document.secret_attachment({"Ref": "DatabaseSecret"}) == (
            "DatabaseSecretAttachment"
        )
        with pytest.raises(AlreadyExistsError, match="DatabaseSecretAttachment"):
            document.record_secret_attachment(arn, "OtherAttachment")
        assert document.secret_attachment(arn) == "DatabaseSecretAttachment"

    def test_invalid_logical_id_raises(self, document):
        with pytest.raises(ValueError, match="Invalid logical id"):
            document.add_resource("bad-id", "AWS::X::Y", {})

    def test_to_dict_without_transform(self, document):
        document.add_resource("Thing", "AWS::X::Y", {})
        rendered = document.to_dict()
        assert rendered["AWSTemplateFormatVersion"] == "2010-09-09"
        assert "Transform" not in rendered
        assert "Outputs" not in rendered
        assert list(rendered["Resources"]) == ["Thing"]

    def test_transform_added_once(self, document):
        document.add_transform(SERVERLESS_TRANSFORM)
        document.add_transform(SERVERLESS_TRANSFORM)
        assert document.transforms == [SERVERLESS_TRANSFORM]
        assert document.to_dict()["Transform"] == SERVERLESS_TRANSFORM

    def test_outputs(self, document):
        document.add_output("Endpoint", get_att("Db", "Endpoint.Address"), "Writer")
        assert document.to_dict()["Outputs"] == {
            "Endpoint": {
                "Value": {"Fn::GetAtt": ["Db", "Endpoint.Address"]},
                "Description": "Writer",
            }
        }

    def test_to_json_is_valid(self, document):
        document.add_resource("Thing", "AWS::X::Y", {"A": 1})
        assert json.loads(document.to_json())["Resources"]["Thing"]["Properties"] == {
            "A": 1
        }


class TestSaveTemplate:
    def test_writes_json(self, document, tmp_path):
        document.add_resource("Thing", "AWS::X::Y", {})
        path = save_template(document, tmp_path / "out" / "template.json")
        assert path.exists()
        assert json.loads(path.read_text())["Resources"]["Thing"]["Type"] == "AWS::X::Y"
