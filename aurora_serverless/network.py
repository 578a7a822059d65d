"""Network placement: VPCs, subnet selection, security groups, connections.

Also holds the default-object resolvers the cluster builder composes
(``resolve_subnets``, ``resolve_subnet_group``, ``resolve_security_groups``).
Each returns the caller-supplied value when there is one and otherwise
declares a fresh default in the template document.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Sequence

from aurora_serverless.cfn_template import (
    RemovalPolicy,
    TemplateDocument,
    build_tags,
    get_att,
    ref,
)
from aurora_serverless.errors import PreconditionError

logger = logging.getLogger(__name__)

# Tag written by CDK-built VPCs; honoured when classifying looked-up subnets.
_SUBNET_TYPE_TAG = "aws-cdk:subnet-type"


class SubnetType(str, Enum):
    PUBLIC = "Public"
    PRIVATE = "Private"
    ISOLATED = "Isolated"


@dataclass(frozen=True)
class Subnet:
    subnet_id: str
    availability_zone: str = ""
    subnet_type: SubnetType = SubnetType.PRIVATE


@dataclass
class SubnetSelection:
    """Which subnets of a VPC to place a resource in.

    Attributes:
        subnet_type: Restrict to one subnet type.
        subnet_ids: Explicit subnet ids (wins over ``subnet_type``).
        availability_zones: Restrict to these AZs.
        one_per_az: Keep only the first subnet in each AZ.
    """

    subnet_type: Optional[SubnetType] = None
    subnet_ids: list[str] = field(default_factory=list)
    availability_zones: list[str] = field(default_factory=list)
    one_per_az: bool = False


@dataclass
class Vpc:
    vpc_id: str
    subnets: list[Subnet] = field(default_factory=list)

    def _default_subnet_type(self) -> Optional[SubnetType]:
        present = {s.subnet_type for s in self.subnets}
        for candidate in (SubnetType.PRIVATE, SubnetType.ISOLATED, SubnetType.PUBLIC):
            if candidate in present:
                return candidate
        return None

    def select_subnets(self, selection: Optional[SubnetSelection] = None) -> list[Subnet]:
        """Apply ``selection`` to this VPC's subnets.

        With no explicit ids or type, private subnets are preferred, then
        isolated, then public.
        """
        selection = selection or SubnetSelection()

        if selection.subnet_ids:
            by_id = {s.subnet_id: s for s in self.subnets}
            chosen = [by_id.get(sid, Subnet(subnet_id=sid)) for sid in selection.subnet_ids]
        else:
            subnet_type = selection.subnet_type or self._default_subnet_type()
            chosen = [s for s in self.subnets if s.subnet_type == subnet_type]

        if selection.availability_zones:
            zones = set(selection.availability_zones)
            chosen = [s for s in chosen if s.availability_zone in zones]

        if selection.one_per_az:
            seen: set[str] = set()
            unique = []
            for s in chosen:
                if s.availability_zone in seen:
                    continue
                seen.add(s.availability_zone)
                unique.append(s)
            chosen = unique

        return chosen


def _classify_subnet(raw: dict[str, Any]) -> SubnetType:
    tags = {t["Key"]: t["Value"] for t in raw.get("Tags", [])}
    tagged = tags.get(_SUBNET_TYPE_TAG)
    if tagged:
        try:
            return SubnetType(tagged)
        except ValueError:
            logger.debug("Ignoring unknown subnet type tag %r", tagged)
    return SubnetType.PUBLIC if raw.get("MapPublicIpOnLaunch") else SubnetType.PRIVATE


def lookup_vpc(ec2_client: Any, vpc_id: str = "") -> Vpc:
    """Describe a VPC and its subnets with a boto3 EC2 client.

    If ``vpc_id`` is empty the account's default VPC is used.

    Raises:
        RuntimeError: If no VPC id was given and there is no default VPC.
    """
    if not vpc_id:
        vpcs = ec2_client.describe_vpcs(
            Filters=[{"Name": "isDefault", "Values": ["true"]}]
        )
        vpc_list = vpcs.get("Vpcs", [])
        if not vpc_list:
            raise RuntimeError(
                "No default VPC found and no VPC id was provided. "
                "Please specify a VPC id."
            )
        vpc_id = vpc_list[0]["VpcId"]
        logger.info("Auto-discovered default VPC: %s", vpc_id)

    subnets_resp = ec2_client.describe_subnets(
        Filters=[{"Name": "vpc-id", "Values": [vpc_id]}]
    )
    subnets = [
        Subnet(
            subnet_id=s["SubnetId"],
            availability_zone=s.get("AvailabilityZone", ""),
            subnet_type=_classify_subnet(s),
        )
        for s in subnets_resp.get("Subnets", [])
    ]
    if not subnets:
        logger.warning("VPC %s has no subnets", vpc_id)
    return Vpc(vpc_id=vpc_id, subnets=subnets)


# ---------------------------------------------------------------------------
# Security groups and connections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SecurityGroup:
    security_group_id: Any
    logical_id: Optional[str] = None

    @classmethod
    def from_security_group_id(cls, security_group_id: str) -> SecurityGroup:
        return cls(security_group_id=security_group_id)


@dataclass(frozen=True)
class Port:
    protocol: str
    from_port: Any
    to_port: Any

    @classmethod
    def tcp(cls, port: Any) -> Port:
        return cls(protocol="tcp", from_port=port, to_port=port)


class Connections:
    """Security groups of a resource plus the port it listens on."""

    def __init__(
        self,
        security_groups: Optional[Sequence[SecurityGroup]] = None,
        default_port: Optional[Port] = None,
    ) -> None:
        self.security_groups = list(security_groups or [])
        self.default_port = default_port

    def allow_default_port_from(
        self,
        peer: Connections,
        document: TemplateDocument,
        scope_id: str,
        description: str = "",
    ) -> list[str]:
        """Declare ingress rules letting ``peer`` reach the default port.

        Returns:
            Logical ids of the declared ingress rules.

        Raises:
            PreconditionError: If these connections have no default port.
        """
        if self.default_port is None:
            raise PreconditionError(
                "Cannot allow traffic on the default port: no default port is set"
            )
        port = self.default_port
        declared = []
        for i, own in enumerate(self.security_groups):
            for j, other in enumerate(peer.security_groups):
                logical_id = f"{scope_id}Ingress{i}x{j}"
                document.add_resource(
                    logical_id,
                    "AWS::EC2::SecurityGroupIngress",
                    {
                        "GroupId": own.security_group_id,
                        "SourceSecurityGroupId": other.security_group_id,
                        "IpProtocol": port.protocol,
                        "FromPort": port.from_port,
                        "ToPort": port.to_port,
                        "Description": description or None,
                    },
                )
                declared.append(logical_id)
        return declared


def declare_security_group(
    document: TemplateDocument,
    logical_id: str,
    vpc: Vpc,
    description: str,
    tags: Optional[dict[str, str]] = None,
) -> SecurityGroup:
    """Declare a VPC-scoped security group with allow-all egress."""
    document.add_resource(
        logical_id,
        "AWS::EC2::SecurityGroup",
        {
            "GroupDescription": description,
            "VpcId": vpc.vpc_id,
            "SecurityGroupEgress": [
                {
                    "CidrIp": "0.0.0.0/0",
                    "Description": "Allow all outbound traffic by default",
                    "IpProtocol": "-1",
                }
            ],
            "Tags": build_tags(tags),
        },
    )
    return SecurityGroup(security_group_id=get_att(logical_id, "GroupId"), logical_id=logical_id)


# ---------------------------------------------------------------------------
# Subnet groups
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubnetGroup:
    subnet_group_name: Any
    logical_id: Optional[str] = None

    @classmethod
    def from_subnet_group_name(cls, name: str) -> SubnetGroup:
        return cls(subnet_group_name=name)


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------


def resolve_subnets(vpc: Vpc, selection: Optional[SubnetSelection] = None) -> list[Subnet]:
    # Only the count is checked by callers; AZ distinctness is not knowable here.
    subnets = vpc.select_subnets(selection)
    logger.debug(
        "Resolved %d subnet(s) in %s: %s",
        len(subnets),
        vpc.vpc_id,
        [s.subnet_id for s in subnets],
    )
    return subnets


def resolve_subnet_group(
    document: TemplateDocument,
    scope_id: str,
    subnets: Sequence[Subnet],
    supplied: Optional[SubnetGroup] = None,
    removal_policy: Optional[RemovalPolicy] = None,
    tags: Optional[dict[str, str]] = None,
) -> SubnetGroup:
    """Return ``supplied`` or declare a subnet group for the cluster.

    The declared group is retained on delete only when the cluster itself is
    retained.
    """
    if supplied is not None:
        return supplied

    logical_id = f"{scope_id}Subnets"
    policy = "Retain" if removal_policy == RemovalPolicy.RETAIN else None
    document.add_resource(
        logical_id,
        "AWS::RDS::DBSubnetGroup",
        {
            "DBSubnetGroupDescription": f"Subnets for {scope_id} database",
            "SubnetIds": [s.subnet_id for s in subnets],
            "Tags": build_tags(tags),
        },
        deletion_policy=policy,
        update_replace_policy=policy,
    )
    return SubnetGroup(subnet_group_name=ref(logical_id), logical_id=logical_id)


def resolve_security_groups(
    document: TemplateDocument,
    scope_id: str,
    vpc: Vpc,
    supplied: Optional[Sequence[SecurityGroup]] = None,
    tags: Optional[dict[str, str]] = None,
) -> list[SecurityGroup]:
    """Return ``supplied`` or exactly one new default security group."""
    if supplied is not None:
        return list(supplied)
    return [
        declare_security_group(
            document, f"{scope_id}SecurityGroup", vpc, "RDS security group", tags
        )
    ]
