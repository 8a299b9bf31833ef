"""
CloudFormation Template Builder
Builds the two stack templates: the registry stack (ECR repository and ECS
cluster) and the service stack (task definition and Fargate service).
"""
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from frontend_deploy.settings import Settings

logger = logging.getLogger(__name__)

TEMPLATE_VERSION = "2010-09-09"

EXECUTION_ROLE_POLICY = "arn:${AWS::Partition}:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy"

REGISTRY_TEMPLATE_FILE = "registry.json"
SERVICE_TEMPLATE_FILE = "service.json"


@dataclass
class StackTemplate:
    """A template plus what CloudFormation needs to deploy it."""
    stack_name: str
    body: Dict[str, Any]
    parameters: Dict[str, str] = field(default_factory=dict)
    capabilities: List[str] = field(default_factory=list)

    def render(self) -> str:
        return render_template(self.body)


def _tags(settings: Settings, purpose: str) -> List[Dict[str, str]]:
    return [
        {'Key': 'Name', 'Value': settings.project_slug},
        {'Key': 'Project', 'Value': settings.app_name},
        {'Key': 'Purpose', 'Value': purpose},
    ]


def _bounded_name(prefix: str, suffix: str, limit: int) -> str:
    """Shorten `prefix` so the name fits `limit` and never has a dangling hyphen."""
    prefix = prefix[:limit - len(suffix)].rstrip('-')
    return f"{prefix}{suffix}"


def _lifecycle_policy(keep: int) -> str:
    return json.dumps({
        "rules": [
            {
                "rulePriority": 1,
                "description": f"Keep the last {keep} images",
                "selection": {
                    "tagStatus": "any",
                    "countType": "imageCountMoreThan",
                    "countNumber": keep
                },
                "action": {"type": "expire"}
            }
        ]
    })


def build_registry_template(settings: Settings) -> Dict[str, Any]:
    """Template for the container image repository and the cluster."""
    repository_properties = {
        'RepositoryName': settings.resolved_repository_name,
        'ImageScanningConfiguration': {'ScanOnPush': True},
        'Tags': _tags(settings, 'Frontend-Images'),
    }
    if settings.image_retention_count > 0:
        repository_properties['LifecyclePolicy'] = {
            'LifecyclePolicyText': _lifecycle_policy(settings.image_retention_count)
        }

    return {
        'AWSTemplateFormatVersion': TEMPLATE_VERSION,
        'Description': f"Image repository and ECS cluster for {settings.app_name}",
        'Resources': {
            'Repository': {
                'Type': 'AWS::ECR::Repository',
                'Properties': repository_properties,
            },
            'Cluster': {
                'Type': 'AWS::ECS::Cluster',
                'Properties': {
                    'ClusterName': settings.resolved_cluster_name,
                    'Tags': _tags(settings, 'Frontend-Cluster'),
                },
            },
        },
        'Outputs': {
            'RepositoryName': {'Value': {'Ref': 'Repository'}},
            'RepositoryUri': {'Value': {'Fn::GetAtt': ['Repository', 'RepositoryUri']}},
            'ClusterName': {'Value': {'Ref': 'Cluster'}},
            'ClusterArn': {'Value': {'Fn::GetAtt': ['Cluster', 'Arn']}},
        },
    }


def _container_definition(settings: Settings) -> Dict[str, Any]:
    return {
        'Name': settings.project_slug,
        'Image': {'Ref': 'ImageUri'},
        'Essential': True,
        'PortMappings': [
            {
                'ContainerPort': settings.container_port,
                'Protocol': 'tcp'
            }
        ],
        'LogConfiguration': {
            'LogDriver': 'awslogs',
            'Options': {
                'awslogs-group': {'Ref': 'LogGroup'},
                'awslogs-region': {'Ref': 'AWS::Region'},
                'awslogs-stream-prefix': 'ecs'
            }
        },
    }


def _load_balancer_resources(settings: Settings) -> Dict[str, Any]:
    return {
        'LoadBalancerSecurityGroup': {
            'Type': 'AWS::EC2::SecurityGroup',
            'Properties': {
                'GroupDescription': f"HTTP access to the {settings.app_name} load balancer",
                'VpcId': {'Ref': 'VpcId'},
                'SecurityGroupIngress': [
                    {'IpProtocol': 'tcp', 'FromPort': 80, 'ToPort': 80, 'CidrIp': '0.0.0.0/0'}
                ],
                'Tags': _tags(settings, 'Frontend-LoadBalancer'),
            },
        },
        'LoadBalancer': {
            'Type': 'AWS::ElasticLoadBalancingV2::LoadBalancer',
            'Properties': {
                # ALB names: 32 characters, no leading or trailing hyphen
                'Name': _bounded_name(settings.project_slug, "-alb", 32),
                'Scheme': 'internet-facing',
                'Type': 'application',
                'Subnets': {'Ref': 'SubnetIds'},
                'SecurityGroups': [{'Ref': 'LoadBalancerSecurityGroup'}],
                'Tags': _tags(settings, 'Frontend-LoadBalancer'),
            },
        },
        'TargetGroup': {
            'Type': 'AWS::ElasticLoadBalancingV2::TargetGroup',
            'Properties': {
                'Port': settings.container_port,
                'Protocol': 'HTTP',
                # awsvpc tasks register by IP
                'TargetType': 'ip',
                'VpcId': {'Ref': 'VpcId'},
                'HealthCheckPath': settings.health_check_path,
                'HealthCheckIntervalSeconds': 30,
                'HealthyThresholdCount': 2,
                'UnhealthyThresholdCount': 3,
            },
        },
        'Listener': {
            'Type': 'AWS::ElasticLoadBalancingV2::Listener',
            'Properties': {
                'LoadBalancerArn': {'Ref': 'LoadBalancer'},
                'Port': 80,
                'Protocol': 'HTTP',
                'DefaultActions': [
                    {'Type': 'forward', 'TargetGroupArn': {'Ref': 'TargetGroup'}}
                ],
            },
        },
    }


def build_service_template(settings: Settings) -> Dict[str, Any]:
    """Template for the task blueprint and the service that keeps it running."""
    slug = settings.project_slug

    if settings.load_balancer_enabled:
        task_ingress = {
            'IpProtocol': 'tcp',
            'FromPort': settings.container_port,
            'ToPort': settings.container_port,
            'SourceSecurityGroupId': {'Ref': 'LoadBalancerSecurityGroup'},
        }
    else:
        task_ingress = {
            'IpProtocol': 'tcp',
            'FromPort': settings.container_port,
            'ToPort': settings.container_port,
            'CidrIp': '0.0.0.0/0',
        }

    resources: Dict[str, Any] = {
        'LogGroup': {
            'Type': 'AWS::Logs::LogGroup',
            'Properties': {
                'LogGroupName': f"/ecs/{slug}",
                'RetentionInDays': settings.log_retention_days,
            },
        },
        'ExecutionRole': {
            'Type': 'AWS::IAM::Role',
            'Properties': {
                'RoleName': _bounded_name(slug, "-ecs-execution-role", 64),
                'AssumeRolePolicyDocument': {
                    'Version': '2012-10-17',
                    'Statement': [
                        {
                            'Effect': 'Allow',
                            'Principal': {'Service': 'ecs-tasks.amazonaws.com'},
                            'Action': 'sts:AssumeRole'
                        }
                    ]
                },
                'ManagedPolicyArns': [{'Fn::Sub': EXECUTION_ROLE_POLICY}],
            },
        },
        'ServiceSecurityGroup': {
            'Type': 'AWS::EC2::SecurityGroup',
            'Properties': {
                'GroupDescription': f"Traffic to {settings.app_name} tasks on port {settings.container_port}",
                'VpcId': {'Ref': 'VpcId'},
                'SecurityGroupIngress': [task_ingress],
                'Tags': _tags(settings, 'Frontend-Tasks'),
            },
        },
        'TaskDefinition': {
            'Type': 'AWS::ECS::TaskDefinition',
            'Properties': {
                'Family': slug,
                'Cpu': settings.task_cpu,
                'Memory': settings.task_memory,
                'NetworkMode': 'awsvpc',
                'RequiresCompatibilities': ['FARGATE'],
                'ExecutionRoleArn': {'Fn::GetAtt': ['ExecutionRole', 'Arn']},
                'ContainerDefinitions': [_container_definition(settings)],
                'Tags': _tags(settings, 'Frontend-Task'),
            },
        },
    }

    service: Dict[str, Any] = {
        'Type': 'AWS::ECS::Service',
        'Properties': {
            'ServiceName': settings.resolved_service_name,
            'Cluster': settings.resolved_cluster_name,
            'LaunchType': 'FARGATE',
            'DesiredCount': {'Ref': 'DesiredCount'},
            'TaskDefinition': {'Ref': 'TaskDefinition'},
            'NetworkConfiguration': {
                'AwsvpcConfiguration': {
                    'AssignPublicIp': 'ENABLED' if settings.assign_public_ip else 'DISABLED',
                    'Subnets': {'Ref': 'SubnetIds'},
                    'SecurityGroups': [{'Ref': 'ServiceSecurityGroup'}],
                }
            },
            'DeploymentConfiguration': {
                'MaximumPercent': 200,
                'MinimumHealthyPercent': 100,
                'DeploymentCircuitBreaker': {'Enable': True, 'Rollback': True},
            },
            'Tags': _tags(settings, 'Frontend-Service'),
        },
    }

    outputs: Dict[str, Any] = {
        'ServiceName': {'Value': {'Fn::GetAtt': ['Service', 'Name']}},
        'TaskDefinitionArn': {'Value': {'Ref': 'TaskDefinition'}},
        'LogGroupName': {'Value': {'Ref': 'LogGroup'}},
    }

    if settings.load_balancer_enabled:
        resources.update(_load_balancer_resources(settings))
        service['DependsOn'] = ['Listener']
        service['Properties']['HealthCheckGracePeriodSeconds'] = 60
        service['Properties']['LoadBalancers'] = [
            {
                'ContainerName': slug,
                'ContainerPort': settings.container_port,
                'TargetGroupArn': {'Ref': 'TargetGroup'},
            }
        ]
        outputs['LoadBalancerDns'] = {'Value': {'Fn::GetAtt': ['LoadBalancer', 'DNSName']}}

    resources['Service'] = service

    return {
        'AWSTemplateFormatVersion': TEMPLATE_VERSION,
        'Description': f"Fargate task definition and service for {settings.app_name}",
        'Parameters': {
            'ImageUri': {
                'Type': 'String',
                'Description': 'Full image reference including tag'
            },
            'VpcId': {'Type': 'AWS::EC2::VPC::Id'},
            'SubnetIds': {'Type': 'List<AWS::EC2::Subnet::Id>'},
            'DesiredCount': {
                'Type': 'Number',
                'Default': str(settings.desired_count),
                'MinValue': 0
            },
        },
        'Resources': resources,
        'Outputs': outputs,
    }


def registry_stack(settings: Settings) -> StackTemplate:
    return StackTemplate(
        stack_name=settings.registry_stack_name,
        body=build_registry_template(settings),
    )


def service_stack(settings: Settings, image_uri: Optional[str] = None) -> StackTemplate:
    """Service stack with its parameters filled from settings."""
    return StackTemplate(
        stack_name=settings.service_stack_name,
        body=build_service_template(settings),
        parameters={
            'ImageUri': image_uri or settings.image_uri,
            'VpcId': settings.vpc_id or '',
            'SubnetIds': ','.join(settings.subnet_id_list),
            'DesiredCount': str(settings.desired_count),
        },
        capabilities=['CAPABILITY_NAMED_IAM'],
    )


def render_template(template: Dict[str, Any]) -> str:
    return json.dumps(template, indent=2) + "\n"


def write_templates(settings: Settings, output_dir: Optional[str] = None) -> Dict[str, Path]:
    """Write both templates as JSON files for use with the aws CLI."""
    target = Path(output_dir or settings.template_dir)
    target.mkdir(parents=True, exist_ok=True)

    paths = {
        'registry': target / REGISTRY_TEMPLATE_FILE,
        'service': target / SERVICE_TEMPLATE_FILE,
    }
    paths['registry'].write_text(render_template(build_registry_template(settings)))
    paths['service'].write_text(render_template(build_service_template(settings)))

    logger.info(f"Templates written to {target}")
    return paths
