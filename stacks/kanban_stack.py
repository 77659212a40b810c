import os

from aws_cdk import (
    CfnOutput,
    Duration,
    RemovalPolicy,
    Stack,
    aws_apigateway as apigw,
    aws_dynamodb as ddb,
    aws_lambda as _lambda,
    aws_logs as logs,
)
from constructs import Construct

STATUS_INDEX_NAME = "status-createdAt-index"
ASSIGNEE_INDEX_NAME = "assigneeId-status-index"


class KanbanStack(Stack):
    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        stage_name = os.getenv("STAGE", "prod")
        data_retention_mode = os.getenv("DATA_RETENTION_MODE", "destroy").strip().lower()
        if data_retention_mode not in {"destroy", "retain"}:
            raise ValueError(
                "DATA_RETENTION_MODE must be 'destroy' or 'retain' (case-insensitive)"
            )
        # Dev-first default: delete stateful resources on teardown.
        # For production deployments, set DATA_RETENTION_MODE=retain.
        stateful_removal_policy = (
            RemovalPolicy.DESTROY
            if data_retention_mode == "destroy"
            else RemovalPolicy.RETAIN
        )
        schema_version = "2026-10-19"
        name_prefix = f"{construct_id}-{stage_name}"

        # Boards and tasks share one table: PK=BOARD#<id>, SK=BOARD#<id> | TASK#<id>.
        kanban_table = ddb.Table(
            self,
            "KanbanItems",
            partition_key=ddb.Attribute(name="PK", type=ddb.AttributeType.STRING),
            sort_key=ddb.Attribute(name="SK", type=ddb.AttributeType.STRING),
            billing_mode=ddb.BillingMode.PAY_PER_REQUEST,
            point_in_time_recovery=True,
            removal_policy=stateful_removal_policy,
        )
        kanban_table.add_global_secondary_index(
            index_name=STATUS_INDEX_NAME,
            partition_key=ddb.Attribute(name="status", type=ddb.AttributeType.STRING),
            sort_key=ddb.Attribute(name="createdAt", type=ddb.AttributeType.STRING),
            projection_type=ddb.ProjectionType.ALL,
        )
        kanban_table.add_global_secondary_index(
            index_name=ASSIGNEE_INDEX_NAME,
            partition_key=ddb.Attribute(name="assigneeId", type=ddb.AttributeType.STRING),
            sort_key=ddb.Attribute(name="status", type=ddb.AttributeType.STRING),
            projection_type=ddb.ProjectionType.ALL,
        )

        kanban_fn = _lambda.Function(
            self,
            "KanbanHandler",
            runtime=_lambda.Runtime.PYTHON_3_12,
            handler="kanban_handler.handler",
            code=_lambda.Code.from_asset("lambda"),
            # Large boards purge in several sequential batch writes.
            timeout=Duration.seconds(30),
            environment={
                "KANBAN_TABLE": kanban_table.table_name,
                "KANBAN_STATUS_INDEX": STATUS_INDEX_NAME,
                "KANBAN_ASSIGNEE_INDEX": ASSIGNEE_INDEX_NAME,
                "KANBAN_SCHEMA_VERSION": schema_version,
            },
        )
        kanban_table.grant_read_write_data(kanban_fn)

        logs.LogGroup(
            self,
            "KanbanHandlerLogGroup",
            log_group_name=f"/aws/lambda/{kanban_fn.function_name}",
            retention=logs.RetentionDays.ONE_WEEK,
            removal_policy=stateful_removal_policy,
        )
        access_log_group = logs.LogGroup(
            self,
            "KanbanApiAccessLogGroup",
            retention=logs.RetentionDays.ONE_WEEK,
            removal_policy=stateful_removal_policy,
        )

        rest_api = apigw.RestApi(
            self,
            "KanbanApi",
            rest_api_name=f"{name_prefix}-api",
            deploy_options=apigw.StageOptions(
                stage_name=stage_name,
                access_log_destination=apigw.LogGroupLogDestination(access_log_group),
                access_log_format=apigw.AccessLogFormat.json_with_standard_fields(
                    caller=True,
                    http_method=True,
                    ip=True,
                    protocol=True,
                    request_time=True,
                    resource_path=True,
                    response_length=True,
                    status=True,
                    user=True,
                ),
            ),
            default_cors_preflight_options=apigw.CorsOptions(
                allow_origins=apigw.Cors.ALL_ORIGINS,
                allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
                allow_headers=["Content-Type"],
            ),
            cloud_watch_role=True,
        )
        integration = apigw.LambdaIntegration(kanban_fn)

        health = rest_api.root.add_resource("health")
        boards = rest_api.root.add_resource("boards")
        tasks = rest_api.root.add_resource("tasks")
        tasks_status = tasks.add_resource("status")
        tasks_by_status = tasks.add_resource("by-status")
        tasks_by_assignee = tasks.add_resource("by-assignee")

        health.add_method("GET", integration)
        for method in ("GET", "POST", "DELETE"):
            boards.add_method(method, integration)
            tasks.add_method(method, integration)
        tasks_status.add_method("PATCH", integration)
        tasks_by_status.add_method("GET", integration)
        tasks_by_assignee.add_method("GET", integration)

        CfnOutput(
            self,
            "KanbanApiUrl",
            value=rest_api.url,
            description="Invoke URL base for the kanban API (set as KANBAN_API_ENDPOINT).",
        )
        CfnOutput(
            self,
            "KanbanTableName",
            value=kanban_table.table_name,
            description="DynamoDB table holding boards and tasks.",
        )
