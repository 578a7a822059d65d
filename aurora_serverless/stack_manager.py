"""CloudFormation stack management for serverless cluster templates.

Provides ``ServerlessStackManager`` -- the layer that hands a
``TemplateDocument`` to CloudFormation, waits for it, and binds the stack
outputs back into the ``ServerlessCluster`` handle.  Stack metadata is cached
locally in ``~/.config/aurora-serverless/stacks.json`` (override with
``AURORA_SERVERLESS_METADATA_PATH``).
"""

from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import boto3

from aurora_serverless.cfn_template import TemplateDocument

logger = logging.getLogger(__name__)

MANAGED_BY_TAG = "managed-by"
MANAGED_BY_VALUE = "aurora-serverless"

_ACTIVE_STATUSES = [
    "CREATE_COMPLETE",
    "UPDATE_COMPLETE",
    "UPDATE_ROLLBACK_COMPLETE",
    "ROLLBACK_COMPLETE",
]


@dataclass(frozen=True)
class StackSnapshot:
    """One ``describe_stacks`` read of a cluster stack."""

    status: str
    outputs: dict[str, str] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)
    reason: str = ""

    @property
    def settled(self) -> bool:
        # Cleanup phases end in _IN_PROGRESS too.
        return not self.status.endswith("_IN_PROGRESS")

    @classmethod
    def from_stack(cls, stack: dict[str, Any]) -> StackSnapshot:
        return cls(
            status=stack["StackStatus"],
            outputs={o["OutputKey"]: o["OutputValue"] for o in stack.get("Outputs", [])},
            tags={t["Key"]: t["Value"] for t in stack.get("Tags", [])},
            reason=stack.get("StackStatusReason", ""),
        )


def metadata_path() -> Path:
    override = os.environ.get("AURORA_SERVERLESS_METADATA_PATH")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "aurora-serverless" / "stacks.json"


def _load_metadata() -> dict[str, Any]:
    """Load stack metadata from local cache."""
    path = metadata_path()
    if path.exists():
        return json.loads(path.read_text())
    return {}


def _save_metadata(data: dict[str, Any]) -> None:
    """Persist stack metadata to local cache."""
    path = metadata_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, default=str) + "\n")


def _cfn_events_summary(cfn_client: Any, stack_name: str, limit: int = 10) -> str:
    """Summarize recent stack events, failed resources first."""
    try:
        events = cfn_client.describe_stack_events(StackName=stack_name).get(
            "StackEvents", []
        )
    except Exception:
        return "(unable to retrieve stack events)"

    failed = [e for e in events if e.get("ResourceStatus", "").endswith("_FAILED")]
    others = [e for e in events if e not in failed]
    lines: list[str] = []
    for ev in (failed + others)[:limit]:
        line = (
            f"  {ev.get('LogicalResourceId', '?')} "
            f"[{ev.get('ResourceType', '?')}]: {ev.get('ResourceStatus', '')}"
        )
        if ev.get("ResourceStatusReason"):
            line += f" ({ev['ResourceStatusReason']})"
        lines.append(line)
    return "\n".join(lines) if lines else "(no events)"


def _capabilities(document: TemplateDocument) -> list[str]:
    capabilities = ["CAPABILITY_IAM"]
    if document.transforms:
        capabilities.append("CAPABILITY_AUTO_EXPAND")
    return capabilities


class ServerlessStackManager:
    """Creates, watches and deletes stacks built from cluster templates."""

    def __init__(
        self,
        cfn_client: Any | None = None,
        region: str = "us-west-2",
        poll_interval: float = 5.0,
    ) -> None:
        self.region = region
        self.poll_interval = poll_interval
        if cfn_client is not None:
            self._cfn = cfn_client
        else:
            self._cfn = boto3.client("cloudformation", region_name=region)

    # ------------------------------------------------------------------
    # create_stack
    # ------------------------------------------------------------------

    def initiate_create_stack(
        self,
        stack_name: str,
        document: TemplateDocument,
        tags: Optional[dict[str, str]] = None,
    ) -> dict[str, str]:
        """Start stack creation without waiting for completion.

        Returns:
            dict with keys: stack_name, stack_id.
        """
        stack_tags = {MANAGED_BY_TAG: MANAGED_BY_VALUE, **(tags or {})}
        logger.info("Creating CloudFormation stack %s in %s ...", stack_name, self.region)
        resp = self._cfn.create_stack(
            StackName=stack_name,
            TemplateBody=document.to_json(),
            Tags=[{"Key": k, "Value": v} for k, v in stack_tags.items()],
            Capabilities=_capabilities(document),
        )
        stack_id = resp["StackId"]
        logger.info("Stack creation initiated: %s", stack_id)
        return {"stack_name": stack_name, "stack_id": stack_id}

    def create_stack(
        self,
        stack_name: str,
        document: TemplateDocument,
        cluster: Any = None,
        tags: Optional[dict[str, str]] = None,
        callback: Callable[[str, float], None] | None = None,
    ) -> dict[str, Any]:
        """Create a stack, wait for completion and bind its outputs.

        Args:
            stack_name: CloudFormation stack name.
            document: The template to deploy.
            cluster: Optional ``ServerlessCluster`` declared in ``document``;
                it is moved to the provisioned state with the stack outputs.
            tags: Extra stack tags.
            callback: Optional progress callback ``(status, elapsed_secs)``.

        Returns:
            dict with keys: stack_name, stack_id, outputs.

        Raises:
            RuntimeError: If stack creation does not reach CREATE_COMPLETE.
        """
        initiated = self.initiate_create_stack(stack_name, document, tags=tags)
        stack_id = initiated["stack_id"]

        result = self.wait_for_stack(stack_name, "CREATE_COMPLETE", callback=callback)
        if result["status"] != "CREATE_COMPLETE":
            events = _cfn_events_summary(self._cfn, stack_name)
            raise RuntimeError(
                f"Stack {stack_name} ended in {result['status']}.\n"
                f"Recent events:\n{events}"
            )

        outputs = result["outputs"]
        if cluster is not None:
            cluster.bind_outputs(outputs)

        meta = _load_metadata()
        meta[stack_name] = {
            "stack_id": stack_id,
            "region": self.region,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "status": "CREATE_COMPLETE",
        }
        _save_metadata(meta)

        return {"stack_name": stack_name, "stack_id": stack_id, "outputs": outputs}

    # ------------------------------------------------------------------
    # delete_stack
    # ------------------------------------------------------------------

    def delete_stack(
        self, stack_name: str, retain_resources: Optional[list[str]] = None
    ) -> dict[str, str]:
        """Delete a stack, optionally keeping some resources.

        Args:
            stack_name: Name of the stack to delete.
            retain_resources: Logical ids to keep (only honoured by
                CloudFormation for stacks in DELETE_FAILED).

        Returns:
            dict with stack_name and final status.
        """
        kwargs: dict[str, Any] = {"StackName": stack_name}
        if retain_resources:
            kwargs["RetainResources"] = list(retain_resources)
            logger.info(
                "Deleting stack %s (retaining %s) ...",
                stack_name,
                ", ".join(retain_resources),
            )
        else:
            logger.info("Deleting stack %s (all resources) ...", stack_name)

        self._cfn.delete_stack(**kwargs)

        result = self.wait_for_stack(stack_name, "DELETE_COMPLETE")
        if result["status"] != "DELETE_COMPLETE":
            events = _cfn_events_summary(self._cfn, stack_name)
            raise RuntimeError(
                f"Stack deletion ended in {result['status']}.\nRecent events:\n{events}"
            )

        meta = _load_metadata()
        if stack_name in meta:
            meta[stack_name]["status"] = "DELETE_COMPLETE"
            meta[stack_name]["deleted_at"] = datetime.now(timezone.utc).isoformat()
            _save_metadata(meta)

        return {"stack_name": stack_name, "status": "DELETE_COMPLETE"}

    # ------------------------------------------------------------------
    # stack reads
    # ------------------------------------------------------------------

    def describe(self, stack_name: str) -> StackSnapshot:
        """Read the stack once.

        Raises:
            RuntimeError: If the stack does not exist.
        """
        try:
            resp = self._cfn.describe_stacks(StackName=stack_name)
        except Exception as exc:
            raise RuntimeError(f"Stack {stack_name} not found: {exc}") from exc

        stacks = resp.get("Stacks", [])
        if not stacks:
            raise RuntimeError(f"Stack {stack_name} not found.")
        return StackSnapshot.from_stack(stacks[0])

    def get_stack_status(self, stack_name: str) -> dict[str, Any]:
        """Return current stack status, outputs and tags as a plain dict."""
        snapshot = self.describe(stack_name)
        return {
            "stack_name": stack_name,
            "status": snapshot.status,
            "outputs": snapshot.outputs,
            "tags": snapshot.tags,
        }

    def bind_cluster(self, stack_name: str, cluster: Any) -> dict[str, str]:
        """Provision ``cluster`` from the outputs of an existing stack.

        Used after a background deploy, once the stack has completed.

        Raises:
            RuntimeError: If the stack is missing or not in a complete state.
        """
        snapshot = self.describe(stack_name)
        if snapshot.status not in _ACTIVE_STATUSES:
            raise RuntimeError(
                f"Stack {stack_name} is {snapshot.status}; outputs are not final."
            )
        cluster.bind_outputs(snapshot.outputs)
        return snapshot.outputs

    # ------------------------------------------------------------------
    # detect_existing_resources
    # ------------------------------------------------------------------

    def detect_existing_resources(self) -> dict[str, Any]:
        """Find active stacks tagged ``managed-by: aurora-serverless``.

        Returns:
            dict mapping stack names to their status, outputs and tags.
        """
        found: dict[str, Any] = {}
        paginator = self._cfn.get_paginator("list_stacks")
        for page in paginator.paginate(StackStatusFilter=_ACTIVE_STATUSES):
            for summary in page.get("StackSummaries", []):
                name = summary["StackName"]
                try:
                    snapshot = self.describe(name)
                except RuntimeError:
                    logger.debug("Skipping stack %s (describe failed)", name)
                    continue
                if snapshot.tags.get(MANAGED_BY_TAG) == MANAGED_BY_VALUE:
                    found[name] = {
                        "status": snapshot.status,
                        "outputs": snapshot.outputs,
                        "tags": snapshot.tags,
                    }
        return found

    # ------------------------------------------------------------------
    # wait_for_stack
    # ------------------------------------------------------------------

    def wait_for_stack(
        self,
        stack_name: str,
        target_status: str,
        timeout: int = 1800,
        callback: Callable[[str, float], None] | None = None,
    ) -> dict[str, Any]:
        """Poll the stack until it settles or ``timeout`` seconds pass.

        A stack has settled once its status is no longer ``*_IN_PROGRESS``.
        A stack that vanishes while waiting for ``DELETE_COMPLETE`` counts as
        deleted.

        Returns:
            dict with keys: status (``TIMEOUT`` if it never settled), outputs.
        """
        start = time.monotonic()

        while True:
            elapsed = time.monotonic() - start
            if elapsed > timeout:
                logger.error(
                    "Timed out waiting for stack %s (%.0fs elapsed)", stack_name, elapsed
                )
                return {"status": "TIMEOUT", "outputs": {}}

            try:
                snapshot = self.describe(stack_name)
            except RuntimeError:
                if target_status == "DELETE_COMPLETE":
                    return {"status": "DELETE_COMPLETE", "outputs": {}}
                raise

            logger.info("Stack %s: %s (%.0fs elapsed)", stack_name, snapshot.status, elapsed)
            if callback is not None:
                callback(snapshot.status, elapsed)

            if snapshot.status == target_status or snapshot.settled:
                if snapshot.status != target_status and snapshot.reason:
                    logger.warning("Stack %s: %s", stack_name, snapshot.reason)
                return {"status": snapshot.status, "outputs": snapshot.outputs}

            time.sleep(self.poll_interval)
