import argparse
import asyncio
import sys

from .aws import AwsCloud
from .engine import BlueGreenDeployer
from .errors import DeployerError
from .logger import get_logger, setup_logging
from .manifest import load_manifest
from .models import ReleaseConfig
from .runner import ReleaseRunner
from .validation import validate_release

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def aws_client_factory(region, assume_role):
    return AwsCloud(region, assume_role=assume_role)


def build_deployers(app_config, stacks, config, client_factory=aws_client_factory):
    """One deployer per selected stack, with a client for each active region"""
    deployers = []
    for spec in stacks:
        role = config.assume_role or spec.assume_role
        clients = {
            t.region: client_factory(t.region, role)
            for t in spec.regions if config.is_region_active(t.region)
        }
        deployers.append(BlueGreenDeployer(spec, app_config, clients))
    return deployers


def format_summary(app_config, stacks, config):
    lines = [
        "=" * 60,
        "Target Stack Deployment Information",
        "=" * 60,
        f"name       : {app_config.name}",
        f"ami        : {config.ami}",
        f"region     : {config.region or 'all'}",
        f"timeout    : {config.timeout}",
        "=" * 60,
    ]
    for spec in stacks:
        lines += [
            f"[ {spec.stack} ]",
            f"Account                 : {spec.account}",
            f"Environment             : {spec.env or config.env}",
            f"Instance type           : {spec.instance_type}",
            f"SSH key                 : {spec.ssh_key}",
            f"IAM Instance Profile    : {spec.iam_instance_profile}",
            f"Capacity                : {spec.capacity.min}/{spec.capacity.desired}/{spec.capacity.max}",
            f"Regions                 : {', '.join(t.region for t in spec.regions)}",
            "=" * 60,
        ]
    return "\n".join(lines)


async def print_plan(deployers, config):
    for deployer in deployers:
        plans = await deployer.plan(config)
        for region, plan in plans.items():
            previous = ", ".join(plan.previous_fleet_ids) or "none"
            print(f"{deployer.get_stack_name()} [{region}] {plan.fleet_name} replaces: {previous}")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="fleet-deployer", description="Blue-green fleet deployer")
    parser.add_argument("--log-level", default="INFO", choices=LOG_LEVELS, type=str.upper)
    parser.add_argument("--manifest", required=True, help="The manifest configuration file to use")
    parser.add_argument("--ami", required=True, help="The image to use for the servers")
    parser.add_argument("--env", default="", help="The environment that is being deployed into")
    parser.add_argument("--stack", required=True, help="An ordered, comma-delimited list of stacks to deploy")
    parser.add_argument("--assume-role", default="", help="The role ARN to assume into")
    parser.add_argument("--timeout", type=int, default=60,
                        help="Minutes to wait for each polling phase before timing out")
    parser.add_argument("--region", default="",
                        help="Deploy into this region only; all regions of the stack when omitted")
    parser.add_argument("--poll-interval", type=float, default=30.0, help="Seconds between status checks")
    parser.add_argument("--confirm", action=argparse.BooleanOptionalAction, default=True,
                        help="Skip the confirmation prompt (--no-confirm asks first)")
    parser.add_argument("--dry-run", action="store_true", help="Only print the fleets that would be created")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.log_level)
    logger = get_logger("cli")

    config = ReleaseConfig(
        manifest=args.manifest,
        ami=args.ami,
        env=args.env,
        stack=args.stack,
        assume_role=args.assume_role,
        timeout=args.timeout,
        region=args.region,
        confirm=args.confirm,
        poll_interval=args.poll_interval,
    )

    try:
        app_config, stacks = load_manifest(config.manifest)
        selected = validate_release(app_config, stacks, config)
        print(format_summary(app_config, selected, config))

        if not config.confirm:
            answer = input("Are you sure to deploy? (yes/no): ")
            if answer.strip().lower() != "yes":
                print("Deployment cancelled.")
                return

        deployers = build_deployers(app_config, selected, config)
        if args.dry_run:
            asyncio.run(print_plan(deployers, config))
            return
        asyncio.run(ReleaseRunner(deployers).run(config))
    except DeployerError as e:
        logger.error(str(e))
        print(f"Error: {e}")
        sys.exit(1)

    print("Done.")


if __name__ == "__main__":
    main()
