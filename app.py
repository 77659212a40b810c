#!/usr/bin/env python3
import os

import aws_cdk as cdk

from stacks.kanban_stack import KanbanStack

app = cdk.App()

stack_name = os.getenv("CDK_STACK_NAME", "KanbanStack")

KanbanStack(
    app,
    stack_name,
    env=cdk.Environment(
        account=os.getenv("CDK_DEFAULT_ACCOUNT"),
        region=os.getenv("CDK_DEFAULT_REGION", "ap-southeast-1"),
    ),
)

app.synth()
