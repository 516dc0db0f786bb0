"""Fake notifier: records messages and conversations for testing."""

from uuid import uuid4

from marketplace.tracking.notifier.port import Notifier


class FakeNotifier(Notifier):
    """Notifier that keeps everything in memory for test assertions."""

    def __init__(self):
        self.sent: list[dict] = []
        self.conversations: list[dict] = []
        self.should_succeed = True
        self.should_raise = False
        self.failure_reason = "Notification delivery failed"

    def configure(
        self,
        should_succeed: bool = True,
        should_raise: bool = False,
        failure_reason: str = "Notification delivery failed",
    ):
        """Configure the fake adapter behavior for testing."""
        self.should_succeed = should_succeed
        self.should_raise = should_raise
        self.failure_reason = failure_reason

    def _check(self):
        if self.should_raise:
            raise ConnectionError(self.failure_reason)

    def send(self, recipient: str, kind: str, payload: dict) -> dict:
        self._check()
        if not self.should_succeed:
            return {"message_id": None, "status": "failed", "error": self.failure_reason}

        message_id = f"msg-{uuid4().hex[:12]}"
        self.sent.append({"message_id": message_id, "recipient": recipient, "kind": kind, "payload": payload})
        return {"message_id": message_id, "status": "sent"}

    def open_conversation(self, vendor_id: str, customer_email: str, order_number: str, subject: str) -> dict:
        self._check()
        if not self.should_succeed:
            return {"conversation_id": None, "status": "failed", "error": self.failure_reason}

        conversation_id = f"conv-{uuid4().hex[:12]}"
        self.conversations.append(
            {
                "conversation_id": conversation_id,
                "vendor_id": vendor_id,
                "customer_email": customer_email,
                "order_number": order_number,
                "subject": subject,
            }
        )
        return {"conversation_id": conversation_id, "status": "opened"}

    def sent_of_kind(self, kind: str) -> list[dict]:
        return [m for m in self.sent if m["kind"] == kind]

    def reset(self):
        self.sent.clear()
        self.conversations.clear()
        self.should_succeed = True
        self.should_raise = False
        self.failure_reason = "Notification delivery failed"
