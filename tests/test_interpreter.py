import asyncio
import json

import httpx

from leadflow.core.collaborators import Collaborators
from leadflow.core.graph import WorkflowEdge
from leadflow.core.interpreter import WorkflowInterpreter
from leadflow.core.models import NodeType, RunState
from helpers import Outbox, chain, no_sleep, node


def run(interpreter, variables=None, **kwargs):
    return asyncio.run(interpreter.run(variables, **kwargs))


def executed(outcome):
    return [step.node_id for step in outcome.steps]


def test_email_delay_follow_up_sequence(outbox, collaborators):
    graph = chain(
        node("start", "trigger"),
        node("first", "email", to="lead@example.com", subject="Hi {name}", body="Hello"),
        node("wait", "delay", delaySeconds=1),
        node("second", "email", to="lead@example.com", subject="Follow up", body="Again"),
    )
    slept = []

    async def record_sleep(seconds):
        slept.append(seconds)

    interpreter = WorkflowInterpreter(
        graph, collaborators, max_inline_delay=5, sleep=record_sleep
    )
    outcome = run(interpreter, {"name": "Acme"})

    assert outcome.status == RunState.SUCCESS
    assert outcome.success
    assert [m["subject"] for m in outbox.sent] == ["Hi Acme", "Follow up"]
    assert executed(outcome) == ["start", "first", "wait", "second"]
    assert [s.node_type for s in outcome.steps] == [
        NodeType.TRIGGER,
        NodeType.EMAIL,
        NodeType.DELAY,
        NodeType.EMAIL,
    ]
    assert slept == [1.0]
    assert outcome.logs[-1] == "Workflow completed after 4 nodes"


def test_same_input_gives_same_walk(collaborators):
    graph = chain(
        node("start", "trigger"),
        node("check", "condition", field="score", operator="greater_than", value=50),
        node("hot", "email", to="sales@example.com", subject="Hot lead {company}"),
        node("cold", "email", to="nurture@example.com", subject="Cold lead"),
        edges=[
            WorkflowEdge("start", "check"),
            WorkflowEdge("check", "hot", source_handle="true"),
            WorkflowEdge("check", "cold", source_handle="false"),
        ],
    )
    interpreter = WorkflowInterpreter(graph, collaborators)
    first = run(interpreter, {"score": 80, "company": "Acme"})
    second = run(interpreter, {"score": 80, "company": "Acme"})

    assert executed(first) == executed(second) == ["start", "check", "hot"]
    assert first.status == second.status == RunState.SUCCESS


def test_failure_stops_downstream_nodes():
    outbox = Outbox(fail_for={"bounce@example.com"})
    graph = chain(
        node("start", "trigger"),
        node("a", "email", to="ok@example.com", subject="A"),
        node("b", "email", to="bounce@example.com", subject="B"),
        node("c", "email", to="ok@example.com", subject="C"),
    )
    outcome = run(WorkflowInterpreter(graph, Collaborators(email_sender=outbox)))

    assert outcome.status == RunState.FAILED
    assert executed(outcome) == ["start", "a", "b"]
    assert outcome.steps[-1].success is False
    assert outcome.error == "mailbox bounce@example.com rejected"
    assert [m["subject"] for m in outbox.sent] == ["A"]
    assert any("'b'" in line and "failed" in line for line in outcome.logs)


def social_collaborators(publishers):
    async def lookup(account_id):
        return {"id": account_id, "token": "t"}

    return Collaborators(account_lookup=lookup, social_publishers=publishers)


def test_social_post_partial_success():
    posted = []

    async def x_publisher(account, content, media_url):
        raise RuntimeError("rate limited")

    async def y_publisher(account, content, media_url):
        posted.append(content)
        return True

    graph = chain(
        node("start", "trigger"),
        node(
            "post",
            "social_post",
            accountId="acc-1",
            content="New offer for {name}",
            platforms=["x", "y"],
        ),
    )
    collaborators = social_collaborators({"x": x_publisher, "y": y_publisher})
    outcome = run(WorkflowInterpreter(graph, collaborators), {"name": "Acme"})

    assert outcome.status == RunState.SUCCESS
    step = outcome.steps[-1]
    assert step.success
    assert step.output["results"] == {"x": False, "y": True}
    assert "postedAt" in step.output
    assert posted == ["New offer for Acme"]


def test_social_post_fails_when_every_platform_fails():
    async def refuse(account, content, media_url):
        return False

    graph = chain(
        node("start", "trigger"),
        node("post", "social_post", accountId="acc-1", content="hi", platforms=["x", "myspace"]),
    )
    outcome = run(WorkflowInterpreter(graph, social_collaborators({"x": refuse})))

    assert outcome.status == RunState.FAILED
    assert outcome.steps[-1].output["results"] == {"x": False, "myspace": False}


def test_social_post_without_account():
    async def no_account(account_id):
        return None

    graph = chain(
        node("start", "trigger"),
        node("post", "social_post", accountId="gone", platforms=["x"]),
    )
    outcome = run(WorkflowInterpreter(graph, Collaborators(account_lookup=no_account)))
    assert outcome.error == "Connected account not found"


def test_missing_trigger_fails_without_running_anything(collaborators, outbox):
    graph = chain(node("a", "email", to="x@example.com", subject="never"))
    outcome = run(WorkflowInterpreter(graph, collaborators))

    assert outcome.status == RunState.FAILED
    assert outcome.error == "No trigger node found"
    assert outcome.steps == []
    assert outbox.sent == []


def test_trigger_only_workflow_succeeds():
    outcome = run(WorkflowInterpreter(chain(node("start", "trigger"))))
    assert outcome.status == RunState.SUCCESS
    assert executed(outcome) == ["start"]


def test_condition_false_branch(collaborators, outbox):
    graph = chain(
        node("start", "trigger"),
        node("check", "condition", field="business.rating", operator="less_than", value=3),
        node("apology", "email", to="{email}", subject="Sorry"),
        node("thanks", "email", to="{email}", subject="Thanks"),
        edges=[
            WorkflowEdge("start", "check"),
            WorkflowEdge("check", "apology", label="True"),
            WorkflowEdge("check", "thanks", label="False"),
        ],
    )
    outcome = run(
        WorkflowInterpreter(graph, collaborators),
        {"email": "owner@example.com", "business": {"rating": 4.5}},
    )

    assert executed(outcome) == ["start", "check", "thanks"]
    assert outcome.steps[1].output["result"] is False
    assert outbox.sent[0]["to"] == "owner@example.com"


def test_condition_without_matching_branch_stops_cleanly(collaborators, outbox):
    graph = chain(
        node("start", "trigger"),
        node("check", "condition", field="email", operator="exists"),
        node("send", "email", subject="Hello"),
        edges=[
            WorkflowEdge("start", "check"),
            WorkflowEdge("check", "send", source_handle="true"),
        ],
    )
    outcome = run(WorkflowInterpreter(graph, collaborators), {"email": ""})

    assert outcome.status == RunState.SUCCESS
    assert executed(outcome) == ["start", "check"]
    assert outbox.sent == []


def test_untagged_condition_edge_follows_only_when_true(collaborators, outbox):
    graph = chain(
        node("start", "trigger"),
        node("check", "condition", field="tags", operator="contains", value="vip"),
        node("send", "email", to="vip@example.com", subject="VIP"),
    )
    interpreter = WorkflowInterpreter(graph, collaborators)

    assert executed(run(interpreter, {"tags": ["vip", "new"]})) == ["start", "check", "send"]
    assert executed(run(interpreter, {"tags": ["new"]})) == ["start", "check"]
    assert len(outbox.sent) == 1


def test_unknown_operator_fails_the_node():
    graph = chain(
        node("start", "trigger"),
        node("check", "condition", field="x", operator="matches", value="y"),
    )
    outcome = run(WorkflowInterpreter(graph))
    assert outcome.status == RunState.FAILED
    assert "matches" in outcome.error


def test_social_monitor_writes_back_to_context():
    mentions = [{"id": "m1", "text": "love it"}]
    calls = []

    async def lookup(account_id):
        return {"id": account_id}

    async def monitor(account, platform, monitor_type, keywords):
        calls.append((platform, monitor_type, keywords))
        return mentions

    graph = chain(
        node("start", "trigger"),
        node(
            "watch",
            "social_monitor",
            accountId="acc",
            platform="instagram",
            monitorType="mentions",
            keywords=["brand"],
            saveToVariable="recentMentions",
        ),
        node("check", "condition", field="recentMentions.0.id", operator="equals", value="m1"),
    )
    seed = {"name": "Acme"}
    outcome = run(
        WorkflowInterpreter(
            graph, Collaborators(account_lookup=lookup, social_monitor=monitor)
        ),
        seed,
    )

    assert outcome.status == RunState.SUCCESS
    assert outcome.variables["recentMentions"] == mentions
    assert outcome.steps[1].output["savedTo"] == "recentMentions"
    assert outcome.steps[1].output["count"] == 1
    assert outcome.steps[2].output["result"] is True
    assert calls == [("instagram", "mentions", ["brand"])]
    assert "recentMentions" not in seed


def test_social_monitor_rejects_unknown_type():
    async def lookup(account_id):
        return {"id": account_id}

    graph = chain(
        node("start", "trigger"),
        node("watch", "social_monitor", accountId="acc", monitorType="likes"),
    )
    outcome = run(WorkflowInterpreter(graph, Collaborators(account_lookup=lookup)))
    assert outcome.error == "Unknown monitor type: likes"


def test_concurrent_runs_do_not_share_variables():
    async def ai(prompt, options):
        await asyncio.sleep(0)
        return prompt.upper()

    graph = chain(
        node("start", "trigger"),
        node("write", "ai_agent", prompt="pitch for {name}", saveToVariable="pitch"),
        node("wait", "delay", delaySeconds=0.01),
        node("again", "ai_agent", prompt="{pitch}!"),
    )
    interpreter = WorkflowInterpreter(
        graph, Collaborators(ai_client=ai), max_inline_delay=1, sleep=no_sleep
    )

    async def both():
        return await asyncio.gather(
            interpreter.run({"name": "acme"}), interpreter.run({"name": "globex"})
        )

    first, second = asyncio.run(both())
    assert first.variables["pitch"] == "PITCH FOR ACME"
    assert second.variables["pitch"] == "PITCH FOR GLOBEX"
    assert first.variables["aiResult"] == "PITCH FOR ACME!"
    assert second.variables["aiResult"] == "PITCH FOR GLOBEX!"


def test_long_delay_suspends_at_next_node(collaborators, outbox):
    graph = chain(
        node("start", "trigger"),
        node("first", "email", to="lead@example.com", subject="Welcome"),
        node("wait", "delay", delayHours=48),
        node("second", "email", to="lead@example.com", subject="Checking in"),
    )
    interpreter = WorkflowInterpreter(graph, collaborators, max_inline_delay=5)
    outcome = run(interpreter, {"name": "Acme"})

    assert outcome.status == RunState.SUSPENDED
    assert outcome.cursor == "second"
    assert outcome.resume_at is not None
    assert len(outbox.sent) == 1

    resumed = run(interpreter, outcome.variables, start_at=outcome.cursor, logs=outcome.logs)
    assert resumed.status == RunState.SUCCESS
    assert executed(resumed) == ["second"]
    assert [m["subject"] for m in outbox.sent] == ["Welcome", "Checking in"]
    assert resumed.logs[: len(outcome.logs)] == outcome.logs


def test_delay_as_last_node_completes():
    graph = chain(node("start", "trigger"), node("wait", "delay", delayMinutes=90))
    outcome = run(WorkflowInterpreter(graph))
    assert outcome.status == RunState.SUCCESS


def test_invalid_delay_fails():
    graph = chain(node("start", "trigger"), node("wait", "delay", delaySeconds="soon"))
    outcome = run(WorkflowInterpreter(graph))
    assert outcome.status == RunState.FAILED
    assert "Invalid delay" in outcome.error


def test_unconfigured_collaborator_fails_with_message():
    graph = chain(
        node("start", "trigger"),
        node("notify", "notification", title="Done"),
    )
    outcome = run(WorkflowInterpreter(graph))
    assert outcome.status == RunState.FAILED
    assert outcome.error == "Notifier is not configured"


def test_email_without_recipient_fails(collaborators):
    graph = chain(node("start", "trigger"), node("mail", "email", subject="Hi"))
    outcome = run(WorkflowInterpreter(graph, collaborators))
    assert outcome.error == "Email node has no recipient"


def test_cycle_hits_step_limit():
    graph = chain(
        node("start", "trigger"),
        node("loop", "delay", delaySeconds=0),
        edges=[WorkflowEdge("start", "loop"), WorkflowEdge("loop", "loop")],
    )
    outcome = run(WorkflowInterpreter(graph, max_steps=10))
    assert outcome.status == RunState.FAILED
    assert len(outcome.steps) == 10
    assert "Step limit" in outcome.error


def test_api_request_saves_response_body():
    requests = []

    def respond(request):
        requests.append(request)
        return httpx.Response(200, json={"score": 91})

    graph = chain(
        node("start", "trigger"),
        node(
            "lookup",
            "api_request",
            url="https://crm.example.com/leads/{leadId}",
            method="get",
            saveToVariable="lead",
        ),
        node("check", "condition", field="lead.score", operator="greater_than", value=90),
    )
    interpreter = WorkflowInterpreter(
        graph, http_transport=httpx.MockTransport(respond)
    )
    outcome = run(interpreter, {"leadId": "L-7"})

    assert outcome.status == RunState.SUCCESS
    assert str(requests[0].url) == "https://crm.example.com/leads/L-7"
    assert outcome.variables["lead"] == {"score": 91}
    assert outcome.steps[-1].output["result"] is True


def test_webhook_posts_run_context_and_fails_on_error_status():
    bodies = []

    def respond(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(502, text="bad gateway")

    graph = chain(
        node("start", "trigger"),
        node("hook", "webhook", url="https://hooks.example.com/in"),
    )
    interpreter = WorkflowInterpreter(graph, http_transport=httpx.MockTransport(respond))
    outcome = run(interpreter, {"name": "Acme"}, workflow_id="wf-1", run_id="run-1")

    assert outcome.status == RunState.FAILED
    assert outcome.error == "HTTP 502 from https://hooks.example.com/in"
    assert bodies == [
        {"workflowId": "wf-1", "runId": "run-1", "variables": {"name": "Acme"}}
    ]
