"""CloudFormation template document for serverless cluster definitions.

A ``TemplateDocument`` is the resource description handed to the
provisioning engine.  Values that only exist once the engine has created a
resource (identifiers, endpoint addresses, ports) are represented by
intrinsic-function dicts such as ``{"Ref": ...}`` or ``{"Fn::GetAtt": ...}``.
"""

from __future__ import annotations

import json
import logging
import re
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from aurora_serverless.errors import AlreadyExistsError

logger = logging.getLogger(__name__)

TEMPLATE_FORMAT_VERSION = "2010-09-09"
SERVERLESS_TRANSFORM = "AWS::Serverless-2016-10-31"

DEFAULT_COST_CENTER = "global"

_LOGICAL_ID_RE = re.compile(r"^[A-Za-z0-9]{1,255}$")
_INTRINSIC_KEYS = ("Ref", "Fn::GetAtt", "Fn::Join", "Fn::Sub", "Fn::ImportValue")


class RemovalPolicy(str, Enum):
    """What happens to a resource when it is removed from the stack."""

    DESTROY = "destroy"
    RETAIN = "retain"
    SNAPSHOT = "snapshot"

    @property
    def deletion_policy(self) -> str:
        return {"destroy": "Delete", "retain": "Retain", "snapshot": "Snapshot"}[
            self.value
        ]


def ref(logical_id: str) -> dict[str, str]:
    return {"Ref": logical_id}


def get_att(logical_id: str, attribute: str) -> dict[str, list[str]]:
    return {"Fn::GetAtt": [logical_id, attribute]}


def is_token(value: Any) -> bool:
    """Return True if ``value`` is an unresolved CloudFormation intrinsic."""
    return (
        isinstance(value, dict)
        and len(value) == 1
        and next(iter(value)) in _INTRINSIC_KEYS
    )


def dynamic_secret_reference(secret_arn: Any, json_key: str) -> Any:
    """Build a ``{{resolve:secretsmanager:...}}`` dynamic reference.

    The reference is a plain string when the ARN is known, otherwise an
    ``Fn::Join`` around the ARN token.
    """
    suffix = f":SecretString:{json_key}::}}}}"
    if is_token(secret_arn):
        return {"Fn::Join": ["", ["{{resolve:secretsmanager:", secret_arn, suffix]]}
    return f"{{{{resolve:secretsmanager:{secret_arn}{suffix}"


def sanitize_logical_id(name: str) -> str:
    """Strip everything but alphanumerics from a construct name."""
    return re.sub(r"[^A-Za-z0-9]", "", name)


def build_tags(tags: Optional[dict[str, str]] = None) -> list[dict[str, str]]:
    """Render a tag mapping as a CloudFormation ``Tags`` list.

    ``cost-center`` is always present.
    """
    merged = {"cost-center": DEFAULT_COST_CENTER}
    merged.update(tags or {})
    return [{"Key": k, "Value": v} for k, v in sorted(merged.items())]


class TemplateDocument:
    """An in-memory CloudFormation template.

    Resources are registered under unique logical ids; registering the same
    id twice raises ``AlreadyExistsError``.
    """

    def __init__(self, description: str = "Aurora Serverless cluster") -> None:
        self.description = description
        self._resources: dict[str, dict[str, Any]] = {}
        self._outputs: dict[str, dict[str, Any]] = {}
        self._transforms: list[str] = []
        # secret ARN (as JSON) -> attachment logical id
        self._secret_attachments: dict[str, str] = {}

    def __contains__(self, logical_id: str) -> bool:
        return logical_id in self._resources

    @property
    def resources(self) -> dict[str, dict[str, Any]]:
        return self._resources

    @property
    def outputs(self) -> dict[str, dict[str, Any]]:
        return self._outputs

    @property
    def transforms(self) -> list[str]:
        return list(self._transforms)

    def add_resource(
        self,
        logical_id: str,
        resource_type: str,
        properties: dict[str, Any],
        *,
        deletion_policy: Optional[str] = None,
        update_replace_policy: Optional[str] = None,
        depends_on: Optional[list[str]] = None,
    ) -> dict[str, Any]:
        """Register a resource and return its (mutable) definition."""
        if not _LOGICAL_ID_RE.match(logical_id):
            raise ValueError(
                f"Invalid logical id {logical_id!r}: only alphanumerics are allowed"
            )
        if logical_id in self._resources:
            raise AlreadyExistsError(
                f"A resource with logical id {logical_id!r} already exists"
            )

        resource: dict[str, Any] = {
            "Type": resource_type,
            # Drop unset properties so the provider applies its own defaults.
            "Properties": {k: v for k, v in properties.items() if v is not None},
        }
        if deletion_policy is not None:
            resource["DeletionPolicy"] = deletion_policy
        if update_replace_policy is not None:
            resource["UpdateReplacePolicy"] = update_replace_policy
        if depends_on:
            resource["DependsOn"] = list(depends_on)

        self._resources[logical_id] = resource
        logger.debug("Declared %s (%s)", logical_id, resource_type)
        return resource

    def add_output(
        self, name: str, value: Any, description: Optional[str] = None
    ) -> None:
        output: dict[str, Any] = {"Value": value}
        if description:
            output["Description"] = description
        self._outputs[name] = output

    def secret_attachment(self, secret_arn: Any) -> Optional[str]:
        """Logical id of the attachment declared for ``secret_arn``, if any."""
        return self._secret_attachments.get(json.dumps(secret_arn, sort_keys=True))

    def record_secret_attachment(self, secret_arn: Any, logical_id: str) -> None:
        """Remember that ``secret_arn`` is attached by ``logical_id``.

        Raises:
            AlreadyExistsError: If the secret is already attached in this
                template.
        """
        key = json.dumps(secret_arn, sort_keys=True)
        existing = self._secret_attachments.get(key)
        if existing is not None:
            raise AlreadyExistsError(
                f"Secret is already attached to a target (by {existing!r})."
            )
        self._secret_attachments[key] = logical_id

    def add_transform(self, transform: str) -> None:
        if transform not in self._transforms:
            self._transforms.append(transform)

    def to_dict(self) -> dict[str, Any]:
        """Render the complete template as a JSON-serializable dict."""
        template: dict[str, Any] = {
            "AWSTemplateFormatVersion": TEMPLATE_FORMAT_VERSION,
            "Description": self.description,
        }
        if self._transforms:
            template["Transform"] = (
                self._transforms[0]
                if len(self._transforms) == 1
                else list(self._transforms)
            )
        template["Resources"] = self._resources
        if self._outputs:
            template["Outputs"] = self._outputs
        return template

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=False)


def save_template(document: TemplateDocument, output_path: str | Path) -> Path:
    """Write ``document`` as JSON to ``output_path``.

    Returns:
        Path to the saved file.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(document.to_json() + "\n")
    logger.info("Template written to %s", output_path)
    return output_path
