"""Per-type node handlers.

Each handler receives the node and the run's ExecutionContext and returns a
NodeExecutionResult. Handlers may read and write `context.variables`; that
dict is owned by a single run.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx

from leadflow.core.collaborators import Collaborators
from leadflow.core.conditions import evaluate_condition, render_template
from leadflow.core.graph import WorkflowGraph, WorkflowNode
from leadflow.core.models import NodeType

logger = logging.getLogger(__name__)

MONITOR_TYPES = ("comments", "mentions", "messages", "followers")
DEFAULT_DELAY_SECONDS = 24 * 60 * 60


@dataclass
class NodeExecutionResult:
    success: bool
    output: Any = None
    error: str | None = None
    next_node_id: str | None = None
    # Set by condition nodes whose branch has no matching edge.
    halt: bool = False
    # Set by delay nodes.
    suspend_seconds: float | None = None


@dataclass
class ExecutionContext:
    graph: WorkflowGraph
    variables: dict[str, Any]
    collaborators: Collaborators
    workflow_id: str | None = None
    user_id: str | None = None
    business_id: str | None = None
    run_id: str | None = None
    http_transport: httpx.AsyncBaseTransport | None = None
    outputs: dict[str, Any] = field(default_factory=dict)


NodeHandler = Callable[[WorkflowNode, ExecutionContext], Awaitable[NodeExecutionResult]]

HANDLERS: dict[NodeType, NodeHandler] = {}


def handler(node_type: NodeType):
    """Register an async handler for a node type."""

    def decorator(fn: NodeHandler) -> NodeHandler:
        HANDLERS[node_type] = fn
        return fn

    return decorator


def _fail(error: str) -> NodeExecutionResult:
    return NodeExecutionResult(success=False, error=error)


async def _lookup_account(context: ExecutionContext, account_id: str | None):
    if not account_id:
        return None
    return await context.collaborators.account_lookup(account_id)


@handler(NodeType.TRIGGER)
async def run_trigger(node: WorkflowNode, context: ExecutionContext) -> NodeExecutionResult:
    return NodeExecutionResult(
        success=True, output={"triggerType": node.data.get("triggerType", "manual")}
    )


@handler(NodeType.EMAIL)
async def run_email(node: WorkflowNode, context: ExecutionContext) -> NodeExecutionResult:
    data = render_template(node.data, context.variables)
    to = data.get("to") or context.variables.get("email")
    if not to:
        return _fail("Email node has no recipient")

    result = await context.collaborators.email_sender(
        str(to), str(data.get("subject", "")), str(data.get("body", ""))
    )
    if not result.success:
        return _fail(result.error or f"Failed to send email to {to}")

    return NodeExecutionResult(
        success=True,
        output={"to": to, "subject": data.get("subject", ""), "messageId": result.message_id},
    )


@handler(NodeType.DELAY)
async def run_delay(node: WorkflowNode, context: ExecutionContext) -> NodeExecutionResult:
    data = node.data
    try:
        if "delaySeconds" in data:
            seconds = float(data["delaySeconds"])
        elif "delayMinutes" in data:
            seconds = float(data["delayMinutes"]) * 60
        elif "delayHours" in data:
            seconds = float(data["delayHours"]) * 3600
        else:
            seconds = DEFAULT_DELAY_SECONDS
    except (TypeError, ValueError):
        return _fail(f"Invalid delay on node '{node.id}'")

    if seconds < 0:
        return _fail(f"Negative delay on node '{node.id}'")

    return NodeExecutionResult(
        success=True, output={"delaySeconds": seconds}, suspend_seconds=seconds
    )


@handler(NodeType.CONDITION)
async def run_condition(node: WorkflowNode, context: ExecutionContext) -> NodeExecutionResult:
    field_name = node.data.get("field", "")
    operator = node.data.get("operator", "equals")
    value = render_template(node.data.get("value"), context.variables)

    try:
        outcome = evaluate_condition(field_name, operator, value, context.variables)
    except ValueError as e:
        return _fail(str(e))

    branch = "true" if outcome else "false"
    output = {"field": field_name, "operator": operator, "result": outcome}

    target = context.graph.branch_target(node.id, branch)
    if target is not None:
        return NodeExecutionResult(success=True, output=output, next_node_id=target)

    has_branches = any(edge.handle for edge in context.graph.outgoing(node.id))
    if outcome and not has_branches:
        # Untagged edges continue only when the condition holds.
        return NodeExecutionResult(success=True, output=output)

    return NodeExecutionResult(success=True, output=output, halt=True)


@handler(NodeType.SOCIAL_POST)
async def run_social_post(node: WorkflowNode, context: ExecutionContext) -> NodeExecutionResult:
    data = render_template(node.data, context.variables)
    account = await _lookup_account(context, data.get("accountId"))
    if not account:
        return _fail("Connected account not found")

    content = str(data.get("content", ""))
    media_url = data.get("mediaUrl")
    results: dict[str, bool] = {}

    for platform in data.get("platforms") or []:
        publish = context.collaborators.social_publishers.get(platform)
        if publish is None:
            logger.warning("Platform %s not supported", platform)
            results[platform] = False
            continue
        try:
            results[platform] = bool(await publish(account, content, media_url))
        except Exception as e:
            logger.error("Error posting to %s: %s", platform, e)
            results[platform] = False

    output = {"results": results, "postedAt": datetime.now(timezone.utc).isoformat()}
    if not any(results.values()):
        return NodeExecutionResult(
            success=False, output=output, error="Post failed on every platform"
        )
    return NodeExecutionResult(success=True, output=output)


@handler(NodeType.SOCIAL_REPLY)
async def run_social_reply(node: WorkflowNode, context: ExecutionContext) -> NodeExecutionResult:
    data = node.data
    account = await _lookup_account(context, data.get("accountId"))
    if not account:
        return _fail("Connected account not found")

    platform = data.get("platform")
    rule = {
        "name": f"Workflow Auto-Reply - {platform}",
        "platform": platform,
        "triggerType": data.get("triggerType"),
        "keywords": data.get("keywords") or [],
        "actionType": data.get("actionType"),
        "responseTemplate": data.get("responseTemplate", ""),
        "isActive": True,
    }
    automation_id = await context.collaborators.automation_creator(account, rule)
    logger.info("Created social automation %s", automation_id)

    return NodeExecutionResult(
        success=True,
        output={
            "automationId": automation_id,
            "platform": platform,
            "triggerType": rule["triggerType"],
        },
    )


@handler(NodeType.SOCIAL_MONITOR)
async def run_social_monitor(node: WorkflowNode, context: ExecutionContext) -> NodeExecutionResult:
    data = node.data
    account = await _lookup_account(context, data.get("accountId"))
    if not account:
        return _fail("Connected account not found")

    monitor_type = data.get("monitorType")
    if monitor_type not in MONITOR_TYPES:
        return _fail(f"Unknown monitor type: {monitor_type}")

    platform = data.get("platform", "")
    results = await context.collaborators.social_monitor(
        account, platform, monitor_type, data.get("keywords") or []
    )
    results = list(results or [])

    output: dict[str, Any] = {
        "results": results,
        "count": len(results),
        "platform": platform,
        "monitorType": monitor_type,
    }
    save_to = data.get("saveToVariable")
    if save_to:
        context.variables[save_to] = results
        output["savedTo"] = save_to

    return NodeExecutionResult(success=True, output=output)


@handler(NodeType.AI_AGENT)
async def run_ai_agent(node: WorkflowNode, context: ExecutionContext) -> NodeExecutionResult:
    prompt = render_template(node.data.get("prompt", ""), context.variables)
    if not prompt:
        return _fail("No AI prompt provided")

    options = {
        key: node.data[key]
        for key in ("model", "temperature", "maxTokens")
        if key in node.data
    }
    text = await context.collaborators.ai_client(str(prompt), options)
    context.variables[node.data.get("saveToVariable") or "aiResult"] = text
    return NodeExecutionResult(success=True, output={"text": text})


async def _http_call(
    context: ExecutionContext,
    method: str,
    url: str,
    headers: dict[str, str],
    body: Any,
    timeout: float,
) -> NodeExecutionResult:
    kwargs: dict[str, Any] = {"headers": headers}
    if body is not None and method in ("POST", "PUT", "PATCH"):
        if isinstance(body, (dict, list)):
            kwargs["json"] = body
        else:
            kwargs["content"] = str(body)

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=context.http_transport) as client:
            response = await client.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        return _fail(f"{method} {url} failed: {e}")

    try:
        payload = response.json()
    except (json.JSONDecodeError, ValueError):
        payload = response.text

    output = {"status": response.status_code, "body": payload}
    if response.status_code >= 400:
        return NodeExecutionResult(
            success=False, output=output, error=f"HTTP {response.status_code} from {url}"
        )
    return NodeExecutionResult(success=True, output=output)


@handler(NodeType.API_REQUEST)
async def run_api_request(node: WorkflowNode, context: ExecutionContext) -> NodeExecutionResult:
    data = render_template(node.data, context.variables)
    url = data.get("url")
    if not url:
        return _fail("URL is required")

    headers = data.get("headers") or {}
    if isinstance(headers, str):
        try:
            headers = json.loads(headers)
        except json.JSONDecodeError:
            headers = {}

    result = await _http_call(
        context,
        str(data.get("method", "GET")).upper(),
        url,
        headers,
        data.get("body"),
        float(data.get("timeout", 30)),
    )
    save_to = data.get("saveToVariable")
    if result.success and save_to:
        context.variables[save_to] = result.output["body"]
    return result


@handler(NodeType.WEBHOOK)
async def run_webhook(node: WorkflowNode, context: ExecutionContext) -> NodeExecutionResult:
    data = render_template(node.data, context.variables)
    url = data.get("url")
    if not url:
        return _fail("Webhook URL is required")

    payload = data.get("payload")
    if payload is None:
        payload = {
            "workflowId": context.workflow_id,
            "runId": context.run_id,
            "variables": context.variables,
        }
    return await _http_call(
        context,
        str(data.get("method", "POST")).upper(),
        url,
        data.get("headers") or {},
        payload,
        float(data.get("timeout", 30)),
    )


@handler(NodeType.DATABASE)
async def run_database(node: WorkflowNode, context: ExecutionContext) -> NodeExecutionResult:
    data = render_template(node.data, context.variables)
    operation = data.get("operation", "read")
    table = data.get("table")
    if not table:
        return _fail("Database node has no table")

    result = await context.collaborators.database(operation, table, data.get("data") or {})
    save_to = data.get("saveToVariable")
    if save_to:
        context.variables[save_to] = result
    return NodeExecutionResult(success=True, output={"operation": operation, "result": result})


@handler(NodeType.NOTIFICATION)
async def run_notification(node: WorkflowNode, context: ExecutionContext) -> NodeExecutionResult:
    data = render_template(node.data, context.variables)
    title = str(data.get("title", "Workflow notification"))
    message = str(data.get("message", ""))
    await context.collaborators.notifier(context.user_id, title, message)
    return NodeExecutionResult(success=True, output={"title": title})
