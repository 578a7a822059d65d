"""Master-user credentials and their resolution.

Three shapes are accepted:

* username + plaintext password (``Credentials.from_password``)
* username + existing secret (``Credentials.from_secret``)
* username only (``Credentials.from_username``) -- resolving it declares a
  managed secret which becomes the only password source.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from aurora_serverless.cfn_template import TemplateDocument
from aurora_serverless.secrets import DatabaseSecret, EncryptionKey, Secret

logger = logging.getLogger(__name__)

DEFAULT_MASTER_USERNAME = "admin"


@dataclass(frozen=True)
class Credentials:
    username: Any
    password: Optional[str] = None
    secret: Optional[Secret] = None
    encryption_key: Optional[EncryptionKey] = None
    exclude_characters: Optional[str] = None

    def __post_init__(self) -> None:
        if self.password is not None and self.secret is not None:
            raise ValueError("Credentials take a password or a secret, not both")

    def __repr__(self) -> str:
        # Never echo a plaintext password.
        return (
            f"Credentials(username={self.username!r}, "
            f"password={'***' if self.password else None}, secret={self.secret!r})"
        )

    @classmethod
    def from_username(
        cls,
        username: str,
        password: Optional[str] = None,
        encryption_key: Optional[EncryptionKey] = None,
        exclude_characters: Optional[str] = None,
    ) -> Credentials:
        return cls(
            username=username,
            password=password,
            encryption_key=encryption_key,
            exclude_characters=exclude_characters,
        )

    @classmethod
    def from_password(cls, username: str, password: str) -> Credentials:
        if not password:
            raise ValueError("password cannot be empty")
        return cls(username=username, password=password)

    @classmethod
    def from_generated_secret(
        cls,
        username: str,
        encryption_key: Optional[EncryptionKey] = None,
        exclude_characters: Optional[str] = None,
    ) -> Credentials:
        return cls.from_username(
            username,
            encryption_key=encryption_key,
            exclude_characters=exclude_characters,
        )

    @classmethod
    def from_secret(cls, secret: Secret, username: Optional[str] = None) -> Credentials:
        """Use an existing secret; the username is read from it unless given."""
        return cls(
            username=username or secret.secret_value_from_json("username"),
            secret=secret,
            encryption_key=secret.encryption_key,
        )


@dataclass(frozen=True)
class ResolvedCredentials:
    """The canonical credential descriptor rendered into the cluster."""

    username: Any
    password: Any
    secret: Optional[Secret] = None

    @property
    def managed(self) -> bool:
        return isinstance(self.secret, DatabaseSecret)


def resolve_credentials(
    credentials: Optional[Credentials],
    document: TemplateDocument,
    scope_id: str,
    encryption_key: Optional[EncryptionKey] = None,
    tags: Optional[dict[str, str]] = None,
) -> ResolvedCredentials:
    """Resolve ``credentials`` into exactly one password source.

    An explicit secret or password passes through unchanged.  Otherwise a
    managed secret scoped to the username is declared (once) and the
    password becomes a dynamic reference into it.
    """
    credentials = credentials or Credentials.from_username(DEFAULT_MASTER_USERNAME)

    if credentials.secret is not None:
        return ResolvedCredentials(
            username=credentials.username,
            password=credentials.secret.secret_value_from_json("password"),
            secret=credentials.secret,
        )

    if credentials.password is not None:
        return ResolvedCredentials(
            username=credentials.username, password=credentials.password
        )

    secret = DatabaseSecret.declare(
        document,
        f"{scope_id}Secret",
        username=credentials.username,
        encryption_key=credentials.encryption_key or encryption_key,
        exclude_characters=credentials.exclude_characters,
        tags=tags,
    )
    return ResolvedCredentials(
        username=credentials.username,
        password=secret.secret_value_from_json("password"),
        secret=secret,
    )
