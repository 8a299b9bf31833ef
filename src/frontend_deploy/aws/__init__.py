"""AWS client access, CloudFormation stacks and the ECR image registry."""
