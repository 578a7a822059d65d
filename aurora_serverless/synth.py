"""Turn a validated cluster definition into a template."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from aurora_serverless.cfn_template import TemplateDocument
from aurora_serverless.cluster import BuildResult, build_serverless_cluster
from aurora_serverless.rotation import MultiUserRotationOptions, RotationJob, RotationManager
from aurora_serverless.secrets import Secret
from aurora_serverless.validation.cluster_config import ClusterDefinition

logger = logging.getLogger(__name__)


@dataclass
class SynthResult:
    build: BuildResult
    rotations: list[RotationJob] = field(default_factory=list)

    @property
    def document(self) -> TemplateDocument:
        return self.build.document


def _days(value: Any) -> Any:
    return timedelta(days=value) if value is not None else None


def synthesize(definition: ClusterDefinition, ec2_client: Any = None) -> SynthResult:
    """Build the cluster and declare the rotations a definition asks for.

    Rotation errors (no secret, duplicate ids) propagate; configuration
    errors from the build are left on ``result.build.errors``.
    """
    config = definition.to_config(ec2_client=ec2_client)
    document = TemplateDocument(
        description=f"Aurora Serverless cluster {definition.scope_id}"
    )
    build = build_serverless_cluster(config, document, scope_id=definition.scope_id)
    result = SynthResult(build=build)

    if definition.rotation is None:
        return result

    manager = RotationManager(document)
    if definition.rotation.single_user is not None:
        result.rotations.append(
            manager.add_single_user_rotation(
                build.cluster,
                _days(definition.rotation.single_user.automatically_after_days),
            )
        )
    for multi in definition.rotation.multi_user:
        result.rotations.append(
            manager.add_multi_user_rotation(
                build.cluster,
                multi.id,
                MultiUserRotationOptions(
                    secret=Secret.from_secret_arn(multi.secret_arn),
                    automatically_after=_days(multi.automatically_after_days),
                ),
            )
        )
    logger.debug("Declared %d rotation(s)", len(result.rotations))
    return result
