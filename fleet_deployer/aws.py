from contextlib import contextmanager

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .collaborator import CloudCollaborator, resolve_alarm_actions
from .errors import CollaboratorCallError
from .logger import get_logger

SESSION_NAME = "fleet-deployer"


def make_session(region, assume_role=""):
    """boto3 session for region, optionally running as assume_role"""
    if not assume_role:
        return boto3.Session(region_name=region)
    try:
        creds = boto3.client("sts").assume_role(RoleArn=assume_role, RoleSessionName=SESSION_NAME)["Credentials"]
    except (ClientError, BotoCoreError) as e:
        raise CollaboratorCallError(region, "assume_role", assume_role, str(e)) from e
    return boto3.Session(
        aws_access_key_id=creds["AccessKeyId"],
        aws_secret_access_key=creds["SecretAccessKey"],
        aws_session_token=creds["SessionToken"],
        region_name=region,
    )


class AwsCloud(CloudCollaborator):
    """Fleets are Auto Scaling groups built from EC2 launch templates"""

    def __init__(self, region, session=None, assume_role=""):
        self.region = region
        self.session = session if session else make_session(region, assume_role)
        self.logger = get_logger("aws")
        self.ec2 = self.session.client("ec2", region_name=region)
        self.autoscaling = self.session.client("autoscaling", region_name=region)
        self.elbv2 = self.session.client("elbv2", region_name=region)
        self.elb = self.session.client("elb", region_name=region)
        self.cloudwatch = self.session.client("cloudwatch", region_name=region)
        self.ssm = self.session.client("ssm", region_name=region)

    @contextmanager
    def _call(self, operation, resource):
        try:
            yield
        except (ClientError, BotoCoreError) as e:
            self.logger.debug(f"[{self.region}] {operation} on {resource} failed: {e}")
            raise CollaboratorCallError(self.region, operation, resource, str(e)) from e

    def _describe_group(self, fleet_id):
        resp = self.autoscaling.describe_auto_scaling_groups(AutoScalingGroupNames=[fleet_id])
        groups = resp["AutoScalingGroups"]
        return groups[0] if groups else None

    def _vpc_id(self, vpc):
        if vpc.startswith("vpc-"):
            return vpc
        vpcs = self.ec2.describe_vpcs(Filters=[{"Name": "tag:Name", "Values": [vpc]}])["Vpcs"]
        if not vpcs:
            raise CollaboratorCallError(self.region, "describe_vpcs", vpc, "no such VPC")
        return vpcs[0]["VpcId"]

    def _security_group_ids(self, vpc_id, names):
        if not names:
            return []
        resp = self.ec2.describe_security_groups(Filters=[
            {"Name": "vpc-id", "Values": [vpc_id]},
            {"Name": "group-name", "Values": list(names)},
        ])
        found = {g["GroupName"]: g["GroupId"] for g in resp["SecurityGroups"]}
        missing = [n for n in names if n not in found]
        if missing:
            raise CollaboratorCallError(self.region, "describe_security_groups", ", ".join(missing), "not found")
        return [found[n] for n in names]

    def _subnet_ids(self, vpc_id, public, zones):
        resp = self.ec2.describe_subnets(Filters=[{"Name": "vpc-id", "Values": [vpc_id]}])
        subnets = []
        for subnet in resp["Subnets"]:
            if bool(subnet.get("MapPublicIpOnLaunch")) != public:
                continue
            if zones and subnet["AvailabilityZone"] not in zones:
                continue
            subnets.append(subnet["SubnetId"])
        if not subnets:
            kind = "public" if public else "private"
            raise CollaboratorCallError(self.region, "describe_subnets", vpc_id, f"no {kind} subnets found")
        return subnets

    def _target_group_arns(self, names):
        if not names:
            return []
        resp = self.elbv2.describe_target_groups(Names=list(names))
        return [tg["TargetGroupArn"] for tg in resp["TargetGroups"]]

    def list_fleets_by_prefix(self, prefix):
        names = []
        with self._call("list_fleets_by_prefix", prefix):
            paginator = self.autoscaling.get_paginator("describe_auto_scaling_groups")
            for page in paginator.paginate():
                for group in page["AutoScalingGroups"]:
                    if group["AutoScalingGroupName"].startswith(prefix):
                        names.append(group["AutoScalingGroupName"])
        return sorted(names)

    def create_compute_template(self, params):
        with self._call("create_compute_template", params.name):
            data = {
                "ImageId": params.image_id,
                "InstanceType": params.instance_type,
                "EbsOptimized": params.ebs_optimized,
                "UserData": params.userdata,
            }
            if params.key_name:
                data["KeyName"] = params.key_name
            if params.instance_profile:
                data["IamInstanceProfile"] = {"Name": params.instance_profile}
            if params.security_groups:
                data["SecurityGroupIds"] = self._security_group_ids(self._vpc_id(params.vpc), params.security_groups)
            if params.block_devices:
                data["BlockDeviceMappings"] = [{
                    "DeviceName": d.device_name,
                    "Ebs": {"VolumeSize": d.volume_size, "VolumeType": d.volume_type, "DeleteOnTermination": True},
                } for d in params.block_devices]
            self.ec2.create_launch_template(LaunchTemplateName=params.name, LaunchTemplateData=data)

    def create_scaling_group(self, params):
        with self._call("create_scaling_group", params.name):
            vpc_id = self._vpc_id(params.vpc)
            kwargs = {
                "AutoScalingGroupName": params.name,
                "LaunchTemplate": {"LaunchTemplateName": params.template_name, "Version": "$Latest"},
                "MinSize": params.capacity.min,
                "MaxSize": params.capacity.max,
                "DesiredCapacity": params.capacity.desired,
                "HealthCheckType": params.healthcheck_type,
                "HealthCheckGracePeriod": params.healthcheck_grace_period,
                "VPCZoneIdentifier": ",".join(
                    self._subnet_ids(vpc_id, params.use_public_subnets, params.availability_zones)
                ),
                "Tags": [{
                    "ResourceId": params.name,
                    "ResourceType": "auto-scaling-group",
                    "Key": key,
                    "Value": value,
                    "PropagateAtLaunch": True,
                } for key, value in params.tags],
            }
            if params.load_balancers:
                kwargs["LoadBalancerNames"] = list(params.load_balancers)
            if params.target_groups:
                kwargs["TargetGroupARNs"] = self._target_group_arns(params.target_groups)
            if params.termination_policies:
                kwargs["TerminationPolicies"] = list(params.termination_policies)
            self.autoscaling.create_auto_scaling_group(**kwargs)

    def resize_to_zero(self, fleet_id):
        with self._call("resize_to_zero", fleet_id):
            self.autoscaling.update_auto_scaling_group(
                AutoScalingGroupName=fleet_id, MinSize=0, MaxSize=0, DesiredCapacity=0
            )

    def fetch_health(self, fleet_id):
        with self._call("fetch_health", fleet_id):
            group = self._describe_group(fleet_id)
            if group is None:
                raise CollaboratorCallError(self.region, "fetch_health", fleet_id, "no such fleet")

            in_service = [
                i["InstanceId"] for i in group["Instances"]
                if i["LifecycleState"] == "InService" and i["HealthStatus"] == "Healthy"
            ]
            self.logger.debug(f"[{self.region}] {fleet_id}: {len(in_service)}/{group['DesiredCapacity']} in service")
            if len(in_service) < group["DesiredCapacity"]:
                return False
            if not in_service:
                return True

            for arn in group.get("TargetGroupARNs", []):
                resp = self.elbv2.describe_target_health(
                    TargetGroupArn=arn, Targets=[{"Id": i} for i in in_service]
                )
                states = [t["TargetHealth"]["State"] for t in resp["TargetHealthDescriptions"]]
                if len(states) < len(in_service) or any(s != "healthy" for s in states):
                    return False

            for name in group.get("LoadBalancerNames", []):
                resp = self.elb.describe_instance_health(
                    LoadBalancerName=name, Instances=[{"InstanceId": i} for i in in_service]
                )
                states = [s["State"] for s in resp["InstanceStates"]]
                if len(states) < len(in_service) or any(s != "InService" for s in states):
                    return False
            return True

    def fetch_termination_state(self, fleet_id):
        with self._call("fetch_termination_state", fleet_id):
            group = self._describe_group(fleet_id)
            return group is None or not group["Instances"]

    def create_scaling_policy(self, policy, fleet_id):
        with self._call("create_scaling_policy", f"{fleet_id}/{policy.name}"):
            resp = self.autoscaling.put_scaling_policy(
                AutoScalingGroupName=fleet_id,
                PolicyName=policy.name,
                AdjustmentType=policy.adjustment_type,
                ScalingAdjustment=policy.scaling_adjustment,
                Cooldown=policy.cooldown,
            )
            return resp["PolicyARN"]

    def enable_metrics(self, fleet_id):
        with self._call("enable_metrics", fleet_id):
            self.autoscaling.enable_metrics_collection(AutoScalingGroupName=fleet_id, Granularity="1Minute")

    def create_alarms(self, fleet_id, alarms, policy_handles, policy_names):
        actions = [resolve_alarm_actions(self.region, a, policy_handles, policy_names) for a in alarms]
        for alarm, alarm_actions in zip(alarms, actions):
            name = f"{fleet_id}-{alarm.name}"
            with self._call("create_alarms", name):
                self.cloudwatch.put_metric_alarm(
                    AlarmName=name,
                    Namespace=alarm.namespace,
                    MetricName=alarm.metric,
                    Statistic=alarm.statistic,
                    ComparisonOperator=alarm.comparison,
                    Threshold=float(alarm.threshold),
                    Period=alarm.period,
                    EvaluationPeriods=alarm.evaluation_periods,
                    AlarmActions=alarm_actions,
                    ActionsEnabled=True,
                    Dimensions=[{"Name": "AutoScalingGroupName", "Value": fleet_id}],
                )

    def run_lifecycle_commands(self, fleet_id, commands):
        with self._call("run_lifecycle_commands", fleet_id):
            group = self._describe_group(fleet_id)
            instance_ids = [i["InstanceId"] for i in group["Instances"]] if group else []
            if not instance_ids:
                self.logger.info(f"[{self.region}] {fleet_id} has no instances to run commands on")
                return
            self.ssm.send_command(
                InstanceIds=instance_ids,
                DocumentName="AWS-RunShellScript",
                Parameters={"commands": list(commands)},
                Comment=f"pre-terminate callbacks for {fleet_id}",
            )
