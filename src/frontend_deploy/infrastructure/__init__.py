"""CloudFormation templates for the registry and service stacks."""
