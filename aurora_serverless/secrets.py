"""Secrets Manager model: managed database secrets and target attachments."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from aurora_serverless.cfn_template import (
    TemplateDocument,
    build_tags,
    dynamic_secret_reference,
    ref,
)
from aurora_serverless.errors import AlreadyExistsError

logger = logging.getLogger(__name__)

# Characters the engines (or the rotation lambdas) choke on in passwords.
DEFAULT_EXCLUDE_CHARACTERS = " %+~`#$&*()|[]{}:;<>?!'/@\"\\"
DEFAULT_PASSWORD_LENGTH = 30


@dataclass(frozen=True)
class EncryptionKey:
    """A KMS key referenced by ARN (or an ARN token)."""

    key_arn: Any


class AttachmentTargetType(str, Enum):
    RDS_DB_INSTANCE = "AWS::RDS::DBInstance"
    RDS_DB_CLUSTER = "AWS::RDS::DBCluster"


@dataclass(frozen=True)
class SecretAttachmentTarget:
    target_id: Any
    target_type: AttachmentTargetType


class Secret:
    """A Secrets Manager secret, declared here or imported by ARN."""

    def __init__(
        self,
        secret_arn: Any,
        encryption_key: Optional[EncryptionKey] = None,
        logical_id: Optional[str] = None,
    ) -> None:
        self.secret_arn = secret_arn
        self.encryption_key = encryption_key
        self.logical_id = logical_id

    def __repr__(self) -> str:
        return f"{type(self).__name__}(secret_arn={self.secret_arn!r})"

    @classmethod
    def from_secret_arn(
        cls, secret_arn: str, encryption_key: Optional[EncryptionKey] = None
    ) -> Secret:
        return cls(secret_arn=secret_arn, encryption_key=encryption_key)

    def secret_value_from_json(self, key: str) -> Any:
        """Dynamic reference to one field of the secret's JSON value."""
        return dynamic_secret_reference(self.secret_arn, key)

    def is_attached_in(self, document: TemplateDocument) -> bool:
        return document.secret_attachment(self.secret_arn) is not None

    def attach(
        self,
        target: Any,
        document: TemplateDocument,
        scope_id: str,
    ) -> AttachedSecret:
        """Attach this secret to ``target`` (anything with
        ``as_secret_attachment_target()``) within ``document``.

        The secret itself is left untouched; attaching the same secret in
        another template is allowed.

        Raises:
            AlreadyExistsError: If the secret is already attached in
                ``document``.
        """
        attachment_target: SecretAttachmentTarget = target.as_secret_attachment_target()
        logical_id = f"{scope_id}Attachment"
        existing = document.secret_attachment(self.secret_arn)
        if existing is not None:
            raise AlreadyExistsError(
                f"Secret is already attached to a target (by {existing!r})."
            )
        document.add_resource(
            logical_id,
            "AWS::SecretsManager::SecretTargetAttachment",
            {
                "SecretId": self.secret_arn,
                "TargetId": attachment_target.target_id,
                "TargetType": attachment_target.target_type.value,
            },
        )
        document.record_secret_attachment(self.secret_arn, logical_id)
        logger.debug(
            "Attached secret %s to %s", self.logical_id or self.secret_arn, logical_id
        )
        return AttachedSecret(
            secret_arn=ref(logical_id),
            encryption_key=self.encryption_key,
            logical_id=logical_id,
            source=self,
            target=attachment_target,
        )


class DatabaseSecret(Secret):
    """A secret whose password is generated by Secrets Manager."""

    @classmethod
    def declare(
        cls,
        document: TemplateDocument,
        logical_id: str,
        username: str,
        encryption_key: Optional[EncryptionKey] = None,
        exclude_characters: Optional[str] = None,
        tags: Optional[dict[str, str]] = None,
    ) -> DatabaseSecret:
        document.add_resource(
            logical_id,
            "AWS::SecretsManager::Secret",
            {
                "Description": f"Generated by aurora-serverless for {logical_id}",
                "GenerateSecretString": {
                    "SecretStringTemplate": json.dumps({"username": username}),
                    "GenerateStringKey": "password",
                    "PasswordLength": DEFAULT_PASSWORD_LENGTH,
                    "ExcludeCharacters": (
                        DEFAULT_EXCLUDE_CHARACTERS
                        if exclude_characters is None
                        else exclude_characters
                    ),
                },
                "KmsKeyId": encryption_key.key_arn if encryption_key else None,
                "Tags": build_tags(tags),
            },
        )
        logger.info("Declared managed secret %s for user %s", logical_id, username)
        return cls(
            secret_arn=ref(logical_id),
            encryption_key=encryption_key,
            logical_id=logical_id,
        )


class AttachedSecret(Secret):
    """A secret bound to a target; its ARN is the attachment's ``Ref``."""

    def __init__(
        self,
        secret_arn: Any,
        encryption_key: Optional[EncryptionKey],
        logical_id: str,
        source: Secret,
        target: SecretAttachmentTarget,
    ) -> None:
        super().__init__(secret_arn, encryption_key, logical_id)
        self.source = source
        self.target = target
