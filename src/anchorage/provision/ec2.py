# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/provision/ec2.py

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterable, List, Optional, Protocol, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from anchorage.errors import ProvisioningError
from anchorage.provision.models import (
    ComputeInstance,
    ContainerRepository,
    StaticAddress,
)

log = logging.getLogger("anchorage")

TAG_KEY = "anchorage:name"

_MISSING_CODES = {
    "InvalidInstanceID.NotFound",
    "InvalidAllocationID.NotFound",
    "InvalidAssociationID.NotFound",
    "InvalidKeyPair.NotFound",
    "InvalidGroup.NotFound",
    "InvalidRouteTableID.NotFound",
    "InvalidInternetGatewayID.NotFound",
    "InvalidSubnetID.NotFound",
    "InvalidVpcID.NotFound",
    "RepositoryNotFoundException",
}


class CloudProvider(Protocol):
    region: str

    def ensure_vpc(self, name: str, cidr: str) -> str: ...
    def ensure_internet_gateway(self, name: str, vpc_id: str) -> str: ...
    def ensure_subnet(self, name: str, vpc_id: str, cidr: str, availability_zone: Optional[str] = None) -> str: ...
    def ensure_route_table(self, name: str, vpc_id: str, igw_id: str, subnet_id: str) -> str: ...
    def ensure_security_group(self, name: str, vpc_id: str, rules: Iterable[Tuple[int, str]]) -> str: ...
    def ensure_key_pair(self, name: str, public_material: str) -> str: ...
    def ensure_address(self, name: str) -> StaticAddress: ...
    def describe_address(self, allocation_id: str) -> StaticAddress: ...
    def associate_address(self, allocation_id: str, instance_id: str) -> str: ...
    def find_ami(self, name_filter: str, owner: str) -> str: ...
    def ensure_instance(self, name: str, **kwargs) -> ComputeInstance: ...
    def ensure_repository(self, name: str, *, scan_on_push: bool = True) -> ContainerRepository: ...
    def delete(self, kind: str, resource_id: str, attributes: dict) -> bool: ...


def _error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


@contextmanager
def _aws(action: str):
    try:
        yield
    except ClientError as e:
        err = e.response.get("Error", {})
        raise ProvisioningError(f"{action} failed: {err.get('Code')}: {err.get('Message', '')}") from e
    except BotoCoreError as e:
        raise ProvisioningError(f"{action} failed: {e}") from e


def _tags(name: str) -> List[dict]:
    return [{"Key": "Name", "Value": name}, {"Key": TAG_KEY, "Value": name}]


def _tag_spec(resource_type: str, name: str) -> List[dict]:
    return [{"ResourceType": resource_type, "Tags": _tags(name)}]


def _by_tag(name: str) -> List[dict]:
    return [{"Name": f"tag:{TAG_KEY}", "Values": [name]}]


def _to_address(raw: dict) -> StaticAddress:
    return StaticAddress(
        allocation_id=raw["AllocationId"],
        ip=raw["PublicIp"],
        association_id=raw.get("AssociationId"),
        instance_id=raw.get("InstanceId"),
    )


def _to_instance(raw: dict, boot_script: str = "") -> ComputeInstance:
    return ComputeInstance(
        id=raw["InstanceId"],
        public_address=raw.get("PublicIpAddress"),
        private_address=raw.get("PrivateIpAddress"),
        boot_script=boot_script,
        state=raw.get("State", {}).get("Name", "unknown"),
    )


class Ec2Provider:
    """
    EC2 + ECR through boto3.

    Every ensure_* call looks the resource up by its anchorage:name tag first
    and creates it only when nothing is found, so repeated runs converge on
    the same resources. All AWS errors surface as ProvisioningError.
    """

    def __init__(
        self,
        *,
        region: str,
        profile: Optional[str] = None,
        ec2=None,
        ecr=None,
    ):
        self.region = region
        if ec2 is None or ecr is None:
            with _aws("AWS session"):
                session = boto3.Session(profile_name=profile, region_name=region)
                ec2 = ec2 or session.client("ec2")
                ecr = ecr or session.client("ecr")
        self.ec2 = ec2
        self.ecr = ecr

    # ------------------------- network -------------------------

    def ensure_vpc(self, name: str, cidr: str) -> str:
        with _aws(f"VPC {name}"):
            found = self.ec2.describe_vpcs(Filters=_by_tag(name))["Vpcs"]
            if found:
                return found[0]["VpcId"]

            log.info("[ec2] Creating VPC %s (%s)", name, cidr)
            vpc_id = self.ec2.create_vpc(
                CidrBlock=cidr, TagSpecifications=_tag_spec("vpc", name),
            )["Vpc"]["VpcId"]
            self.ec2.get_waiter("vpc_available").wait(VpcIds=[vpc_id])
            self.ec2.modify_vpc_attribute(VpcId=vpc_id, EnableDnsSupport={"Value": True})
            self.ec2.modify_vpc_attribute(VpcId=vpc_id, EnableDnsHostnames={"Value": True})
            return vpc_id

    def ensure_internet_gateway(self, name: str, vpc_id: str) -> str:
        with _aws(f"internet gateway {name}"):
            found = self.ec2.describe_internet_gateways(Filters=_by_tag(name))["InternetGateways"]
            if found:
                igw = found[0]
                igw_id = igw["InternetGatewayId"]
                attached = {a["VpcId"] for a in igw.get("Attachments", [])}
            else:
                log.info("[ec2] Creating internet gateway %s", name)
                igw_id = self.ec2.create_internet_gateway(
                    TagSpecifications=_tag_spec("internet-gateway", name),
                )["InternetGateway"]["InternetGatewayId"]
                attached = set()

            if vpc_id not in attached:
                self.ec2.attach_internet_gateway(InternetGatewayId=igw_id, VpcId=vpc_id)
            return igw_id

    def ensure_subnet(
        self,
        name: str,
        vpc_id: str,
        cidr: str,
        availability_zone: Optional[str] = None,
    ) -> str:
        with _aws(f"subnet {name}"):
            found = self.ec2.describe_subnets(Filters=_by_tag(name))["Subnets"]
            if found:
                return found[0]["SubnetId"]

            log.info("[ec2] Creating subnet %s (%s)", name, cidr)
            params = {
                "VpcId": vpc_id,
                "CidrBlock": cidr,
                "TagSpecifications": _tag_spec("subnet", name),
            }
            if availability_zone:
                params["AvailabilityZone"] = availability_zone
            subnet_id = self.ec2.create_subnet(**params)["Subnet"]["SubnetId"]
            self.ec2.modify_subnet_attribute(SubnetId=subnet_id, MapPublicIpOnLaunch={"Value": True})
            return subnet_id

    def ensure_route_table(self, name: str, vpc_id: str, igw_id: str, subnet_id: str) -> str:
        with _aws(f"route table {name}"):
            found = self.ec2.describe_route_tables(Filters=_by_tag(name))["RouteTables"]
            if found:
                rt = found[0]
            else:
                log.info("[ec2] Creating route table %s", name)
                rt = self.ec2.create_route_table(
                    VpcId=vpc_id, TagSpecifications=_tag_spec("route-table", name),
                )["RouteTable"]
            rt_id = rt["RouteTableId"]

            routes = rt.get("Routes", [])
            if not any(r.get("DestinationCidrBlock") == "0.0.0.0/0" for r in routes):
                self.ec2.create_route(
                    RouteTableId=rt_id, DestinationCidrBlock="0.0.0.0/0", GatewayId=igw_id,
                )
            associations = rt.get("Associations", [])
            if not any(a.get("SubnetId") == subnet_id for a in associations):
                self.ec2.associate_route_table(RouteTableId=rt_id, SubnetId=subnet_id)
            return rt_id

    def ensure_security_group(self, name: str, vpc_id: str, rules: Iterable[Tuple[int, str]]) -> str:
        with _aws(f"security group {name}"):
            found = self.ec2.describe_security_groups(
                Filters=_by_tag(name) + [{"Name": "vpc-id", "Values": [vpc_id]}],
            )["SecurityGroups"]
            if found:
                sg = found[0]
                sg_id = sg["GroupId"]
                existing = {
                    (p.get("FromPort"), r.get("CidrIp"))
                    for p in sg.get("IpPermissions", [])
                    for r in p.get("IpRanges", [])
                }
            else:
                log.info("[ec2] Creating security group %s", name)
                sg_id = self.ec2.create_security_group(
                    GroupName=name,
                    Description=f"anchorage {name}",
                    VpcId=vpc_id,
                    TagSpecifications=_tag_spec("security-group", name),
                )["GroupId"]
                existing = set()

            missing = [(port, cidr) for port, cidr in rules if (port, cidr) not in existing]
            for port, cidr in missing:
                try:
                    self.ec2.authorize_security_group_ingress(
                        GroupId=sg_id,
                        IpPermissions=[{
                            "IpProtocol": "tcp",
                            "FromPort": port,
                            "ToPort": port,
                            "IpRanges": [{"CidrIp": cidr}],
                        }],
                    )
                except ClientError as e:
                    if _error_code(e) != "InvalidPermission.Duplicate":
                        raise
            return sg_id

    # ------------------------- compute -------------------------

    def ensure_key_pair(self, name: str, public_material: str) -> str:
        with _aws(f"key pair {name}"):
            try:
                self.ec2.describe_key_pairs(KeyNames=[name])
                log.debug("[ec2] Key pair %s already registered", name)
            except ClientError as e:
                if _error_code(e) != "InvalidKeyPair.NotFound":
                    raise
                log.info("[ec2] Importing key pair %s", name)
                self.ec2.import_key_pair(
                    KeyName=name,
                    PublicKeyMaterial=public_material.encode(),
                    TagSpecifications=_tag_spec("key-pair", name),
                )
            return name

    def find_ami(self, name_filter: str, owner: str) -> str:
        with _aws(f"AMI lookup {name_filter}"):
            images = self.ec2.describe_images(
                Filters=[
                    {"Name": "name", "Values": [name_filter]},
                    {"Name": "state", "Values": ["available"]},
                    {"Name": "architecture", "Values": ["x86_64"]},
                ],
                Owners=[owner],
            )["Images"]
        if not images:
            raise ProvisioningError(f"No AMI matches '{name_filter}' (owner {owner})")
        return sorted(images, key=lambda i: i["CreationDate"], reverse=True)[0]["ImageId"]

    def ensure_instance(
        self,
        name: str,
        *,
        ami_id: str,
        instance_type: str,
        key_name: str,
        subnet_id: str,
        security_group_id: str,
        user_data: str,
        root_volume_gb: int = 30,
    ) -> ComputeInstance:
        with _aws(f"instance {name}"):
            reservations = self.ec2.describe_instances(
                Filters=_by_tag(name) + [{
                    "Name": "instance-state-name",
                    "Values": ["pending", "running", "stopping", "stopped"],
                }],
            )["Reservations"]
            existing = [i for r in reservations for i in r["Instances"]]
            if existing:
                inst = existing[0]
                log.info("[ec2] Instance %s already exists (%s)", name, inst["InstanceId"])
                if inst.get("State", {}).get("Name") in ("stopping", "stopped"):
                    self.ec2.get_waiter("instance_stopped").wait(InstanceIds=[inst["InstanceId"]])
                    self.ec2.start_instances(InstanceIds=[inst["InstanceId"]])
                return self.wait_running(inst["InstanceId"], boot_script=user_data)

            log.info("[ec2] Launching instance %s (%s, %s)", name, instance_type, ami_id)
            inst_id = self.ec2.run_instances(
                ImageId=ami_id,
                InstanceType=instance_type,
                KeyName=key_name,
                MinCount=1,
                MaxCount=1,
                UserData=user_data,
                NetworkInterfaces=[{
                    "DeviceIndex": 0,
                    "SubnetId": subnet_id,
                    "Groups": [security_group_id],
                    "AssociatePublicIpAddress": True,
                }],
                BlockDeviceMappings=[{
                    "DeviceName": "/dev/sda1",
                    "Ebs": {"VolumeSize": root_volume_gb, "VolumeType": "gp3", "DeleteOnTermination": True},
                }],
                TagSpecifications=_tag_spec("instance", name),
            )["Instances"][0]["InstanceId"]
            return self.wait_running(inst_id, boot_script=user_data)

    def wait_running(self, instance_id: str, *, boot_script: str = "") -> ComputeInstance:
        with _aws(f"waiting for {instance_id}"):
            log.info("[ec2] Waiting for %s to be running...", instance_id)
            self.ec2.get_waiter("instance_running").wait(InstanceIds=[instance_id])
            raw = self.ec2.describe_instances(InstanceIds=[instance_id])["Reservations"][0]["Instances"][0]
        return _to_instance(raw, boot_script)

    # ------------------------- addresses -------------------------

    def ensure_address(self, name: str) -> StaticAddress:
        with _aws(f"elastic IP {name}"):
            found = self.ec2.describe_addresses(Filters=_by_tag(name))["Addresses"]
            if found:
                return _to_address(found[0])

            log.info("[ec2] Allocating elastic IP %s", name)
            raw = self.ec2.allocate_address(
                Domain="vpc", TagSpecifications=_tag_spec("elastic-ip", name),
            )
            return StaticAddress(allocation_id=raw["AllocationId"], ip=raw["PublicIp"])

    def describe_address(self, allocation_id: str) -> StaticAddress:
        with _aws(f"elastic IP {allocation_id}"):
            found = self.ec2.describe_addresses(AllocationIds=[allocation_id])["Addresses"]
        if not found:
            raise ProvisioningError(f"Elastic IP {allocation_id} does not exist")
        return _to_address(found[0])

    def associate_address(self, allocation_id: str, instance_id: str) -> str:
        with _aws(f"associating {allocation_id} with {instance_id}"):
            return self.ec2.associate_address(
                AllocationId=allocation_id,
                InstanceId=instance_id,
                AllowReassociation=True,
            )["AssociationId"]

    # ------------------------- registry -------------------------

    def ensure_repository(self, name: str, *, scan_on_push: bool = True) -> ContainerRepository:
        with _aws(f"ECR repository {name}"):
            try:
                repo = self.ecr.describe_repositories(repositoryNames=[name])["repositories"][0]
            except ClientError as e:
                if _error_code(e) != "RepositoryNotFoundException":
                    raise
                log.info("[ecr] Creating repository %s", name)
                repo = self.ecr.create_repository(
                    repositoryName=name,
                    imageTagMutability="MUTABLE",
                    imageScanningConfiguration={"scanOnPush": scan_on_push},
                    tags=[{"Key": TAG_KEY, "Value": name}],
                )["repository"]
        return ContainerRepository(name=name, arn=repo["repositoryArn"], url=repo["repositoryUri"])

    # ------------------------- teardown -------------------------

    def delete(self, kind: str, resource_id: str, attributes: dict) -> bool:
        """
        Delete one recorded resource. Returns False when it was already gone.
        """
        handlers = {
            "aws:ec2/instance": self._delete_instance,
            "aws:ec2/eip": self._release_address,
            "aws:ec2/eip-association": self._disassociate,
            "aws:ec2/key-pair": lambda rid, a: self.ec2.delete_key_pair(KeyName=rid),
            "aws:ec2/security-group": lambda rid, a: self.ec2.delete_security_group(GroupId=rid),
            "aws:ec2/route-table": self._delete_route_table,
            "aws:ec2/internet-gateway": self._delete_internet_gateway,
            "aws:ec2/subnet": lambda rid, a: self.ec2.delete_subnet(SubnetId=rid),
            "aws:ec2/vpc": lambda rid, a: self.ec2.delete_vpc(VpcId=rid),
            "aws:ecr/repository": lambda rid, a: self.ecr.delete_repository(repositoryName=rid, force=True),
        }
        handler = handlers.get(kind)
        if handler is None:
            raise ProvisioningError(f"Don't know how to delete {kind}")

        with _aws(f"deleting {kind} {resource_id}"):
            try:
                handler(resource_id, attributes)
            except ClientError as e:
                if _error_code(e) in _MISSING_CODES:
                    return False
                raise
        return True

    def _delete_instance(self, instance_id: str, attributes: dict) -> None:
        self.ec2.terminate_instances(InstanceIds=[instance_id])
        log.info("[ec2] Waiting for %s to terminate...", instance_id)
        self.ec2.get_waiter("instance_terminated").wait(InstanceIds=[instance_id])

    def _disassociate(self, association_id: str, attributes: dict) -> None:
        self.ec2.disassociate_address(AssociationId=association_id)

    def _release_address(self, allocation_id: str, attributes: dict) -> None:
        found = self.ec2.describe_addresses(AllocationIds=[allocation_id])["Addresses"]
        if found and found[0].get("AssociationId"):
            self.ec2.disassociate_address(AssociationId=found[0]["AssociationId"])
        self.ec2.release_address(AllocationId=allocation_id)

    def _delete_route_table(self, rt_id: str, attributes: dict) -> None:
        rts = self.ec2.describe_route_tables(RouteTableIds=[rt_id])["RouteTables"]
        for assoc in (rts[0].get("Associations", []) if rts else []):
            if not assoc.get("Main"):
                self.ec2.disassociate_route_table(AssociationId=assoc["RouteTableAssociationId"])
        self.ec2.delete_route_table(RouteTableId=rt_id)

    def _delete_internet_gateway(self, igw_id: str, attributes: dict) -> None:
        vpc_id = attributes.get("vpc_id")
        if vpc_id:
            try:
                self.ec2.detach_internet_gateway(InternetGatewayId=igw_id, VpcId=vpc_id)
            except ClientError as e:
                if _error_code(e) != "Gateway.NotAttached":
                    raise
        self.ec2.delete_internet_gateway(InternetGatewayId=igw_id)
