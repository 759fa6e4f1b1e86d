from leadflow.core.collaborators import SendResult
from leadflow.core.graph import WorkflowEdge, WorkflowGraph, WorkflowNode
from leadflow.core.models import NodeType


class Outbox:
    """Email sender stub that records every message."""

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    async def __call__(self, to, subject, body):
        if to in self.fail_for:
            return SendResult(success=False, error=f"mailbox {to} rejected")
        self.sent.append({"to": to, "subject": subject, "body": body})
        return SendResult(success=True, message_id=f"msg-{len(self.sent)}")


def node(node_id, node_type, **data):
    return WorkflowNode(id=node_id, type=NodeType(node_type), data=data)


def chain(*nodes, edges=None):
    """Graph whose nodes are linked in order unless explicit edges are given."""
    if edges is None:
        edges = [WorkflowEdge(source=a.id, target=b.id) for a, b in zip(nodes, nodes[1:])]
    return WorkflowGraph(list(nodes), edges)


async def no_sleep(seconds):
    return None
