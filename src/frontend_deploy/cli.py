# cli.py
import json
import logging
import sys

import click
from botocore.exceptions import ClientError
from pydantic import ValidationError

from frontend_deploy.container.recipe import BuildRecipe, write_build_context
from frontend_deploy.errors import FrontendDeployError
from frontend_deploy.infrastructure.templates import write_templates
from frontend_deploy.monitoring.status_monitor import StatusMonitor
from frontend_deploy.orchestration.deploy import FrontendDeployment
from frontend_deploy.settings import get_settings, get_settings_with_env_file
from frontend_deploy.state.deployment_state import DeploymentStateManager

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _fail(message: str) -> None:
    click.echo(f"❌ {message}", err=True)
    sys.exit(1)


@click.group()
@click.option("--env-file", default=None, help="Extra .env file to load before reading settings")
@click.option("--log-level", default=None,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Override LOG_LEVEL")
def cli(env_file, log_level):
    """Containerize the front-end and deploy it to Amazon ECS"""
    try:
        settings = get_settings_with_env_file(env_file) if env_file else get_settings()
    except (ValidationError, FrontendDeployError) as e:
        _fail(f"Invalid configuration: {e}")

    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format=LOG_FORMAT
    )


@cli.command()
def show_config():
    """Show current configuration"""
    settings = get_settings()

    print("Current Configuration:")
    print(f"  App Name: {settings.app_name}")
    print(f"  Deployment Mode: {settings.deployment_mode}")
    print(f"  AWS Region: {settings.aws_region}")
    print(f"  AWS Endpoint: {settings.aws_endpoint_url}")
    print(f"  Repository: {settings.resolved_repository_name}")
    print(f"  Cluster: {settings.resolved_cluster_name}")
    print(f"  Service: {settings.resolved_service_name}")
    print(f"  Image Tag: {settings.image_tag}")
    print(f"  Build Context: {settings.build_context}")
    print(f"  Container Port: {settings.container_port}")
    print(f"  Task CPU/Memory: {settings.task_cpu}/{settings.task_memory}")
    print(f"  Desired Count: {settings.desired_count}")
    print(f"  VPC: {settings.vpc_id}")
    print(f"  Subnets: {', '.join(settings.subnet_id_list)}")
    print(f"  Load Balancer: {settings.load_balancer_enabled}")


@cli.command()
@click.option("--output-dir", default=None, help="Directory for the templates (default TEMPLATE_DIR)")
@click.option("--overwrite/--no-overwrite", default=False,
              help="Replace an existing Dockerfile, nginx.conf and .dockerignore")
def render(output_dir, overwrite):
    """Write the Dockerfile, nginx config and both CloudFormation templates"""
    settings = get_settings()
    try:
        recipe = BuildRecipe.from_settings(settings)
        build_files = write_build_context(recipe, settings.build_context,
                                          dockerfile=settings.dockerfile, overwrite=overwrite)
        templates = write_templates(settings, output_dir)
    except FrontendDeployError as e:
        _fail(str(e))

    for name, path in {**build_files, **templates}.items():
        print(f"  {name}: {path}")


@cli.command()
@click.option("--skip-build", is_flag=True, help="Reuse an image tag already in the repository")
@click.option("--infrastructure-only", is_flag=True, help="Only deploy the registry stack")
def plan(skip_build, infrastructure_only):
    """Print the equivalent commands, in execution order"""
    deployment = FrontendDeployment(skip_build=skip_build,
                                    infrastructure_only=infrastructure_only,
                                    dry_run=True)
    for index, command in enumerate(deployment.describe_plan(), start=1):
        print(f"{index}. {command}")


@cli.command()
@click.option("--skip-build", is_flag=True, help="Reuse an image tag already in the repository")
@click.option("--infrastructure-only", is_flag=True, help="Only deploy the registry stack")
@click.option("--dry-run", is_flag=True, help="Log the commands without running them")
@click.option("--image-tag", default=None, help="Override IMAGE_TAG for this run")
def deploy(skip_build, infrastructure_only, dry_run, image_tag):
    """Run the full deployment sequence"""
    settings = get_settings()
    if image_tag:
        settings = settings.model_copy(update={"image_tag": image_tag})

    deployment = FrontendDeployment(settings=settings,
                                    skip_build=skip_build,
                                    infrastructure_only=infrastructure_only,
                                    dry_run=dry_run)
    try:
        result = deployment.run()
    except (FrontendDeployError, ClientError) as e:
        _fail(f"Deployment failed: {e}")

    print(json.dumps(result, indent=2, default=str))

    if result.get("status") == "success":
        print("\nDeployment Summary:")
        print(f"Mode: {result.get('mode')}")
        print(f"Region: {result.get('region')}")
        print(f"Cluster: {result.get('cluster_name')}")
        print(f"Image: {result.get('image_uri')}")
        if result.get("deployed_image"):
            print(f"Deployed: {result['deployed_image']}")
        if result.get("url"):
            print(f"URL: {result['url']}")


@cli.command()
@click.option("--dry-run", is_flag=True, help="Log the docker commands without running them")
def build_push(dry_run):
    """Build, tag and push the image to an existing repository"""
    deployment = FrontendDeployment(dry_run=dry_run)
    try:
        image_uri = deployment.build_and_push()
    except (FrontendDeployError, ClientError) as e:
        _fail(f"Image build failed: {e}")
    print(f"✅ Image pushed: {image_uri}")


@cli.command()
@click.option("--wait", is_flag=True, help="Wait for the service to reach a steady state")
def status(wait):
    """Show stack and service status"""
    monitor = StatusMonitor()
    if wait and not monitor.wait_until_stable():
        _fail("Service did not reach a steady state")

    report = monitor.check_deployment_health()
    print(json.dumps(report, indent=2, default=str))
    if report['overall_status'] == 'unhealthy':
        sys.exit(1)


@cli.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.option("--keep-registry", is_flag=True, help="Keep the repository, its images and the cluster")
def destroy(yes, keep_registry):
    """Delete the service stack, then the registry stack"""
    settings = get_settings()
    if not yes:
        click.confirm(
            f"⚠️ This will delete the {settings.app_name} stacks in {settings.aws_region}. Continue?",
            abort=True
        )

    try:
        result = FrontendDeployment().destroy(keep_registry=keep_registry)
    except (FrontendDeployError, ClientError) as e:
        _fail(f"Teardown failed: {e}")
    print(json.dumps(result, indent=2))


@cli.command()
@click.option("--clear", is_flag=True, help="Remove the state file")
def state(clear):
    """Show the recorded state of the last deployment"""
    manager = DeploymentStateManager(get_settings().state_file)
    if clear:
        manager.cleanup_state_file()
        print("Deployment state cleared")
        return

    manager.load_state()
    print(json.dumps(manager.get_status_summary(), indent=2))


if __name__ == "__main__":
    cli()
