import json
import threading
import unittest
from decimal import Decimal
from unittest import mock

from common.error_handling import NotFoundError
from common.schemas import OrderDeliveredEvent
from earnings_service import consumer
from earnings_service.accrual import OrderEventHandler, skip_reason
from tests.support import GROUP, make_engine


def order_event(**overrides):
    payload = {
        "sourceEventId": "ord-1",
        "groupId": GROUP,
        "payeeAccountId": "admin-1",
        "orderTotal": "1000.00",
        "fulfillmentChannel": "group",
        "status": "delivered",
        "previousStatus": "out_for_delivery",
        "orderNumber": "GL-1001",
    }
    payload.update(overrides)
    return payload


class TestEventPolicy(unittest.TestCase):

    def test_parses_camel_case_and_snake_case(self):
        camel = OrderDeliveredEvent.model_validate(order_event())
        snake = OrderDeliveredEvent.model_validate({
            "source_event_id": "ord-1", "group_id": GROUP, "payee_account_id": "admin-1", "order_total": "1000.00",
        })
        self.assertEqual(camel.payee_account_id, "admin-1")
        self.assertEqual(snake.order_total, Decimal("1000.00"))
        self.assertEqual(snake.fulfillment_channel, "group")

    def test_qualifying_event(self):
        self.assertIsNone(skip_reason(OrderDeliveredEvent.model_validate(order_event())))

    def test_skip_reasons(self):
        cases = {
            "not_delivered": order_event(status="shipped"),
            "already_delivered": order_event(previousStatus="delivered"),
            "platform_fulfilled": order_event(fulfillmentChannel="treehouse"),
            "missing_group": order_event(groupId=None),
        }
        for reason, payload in cases.items():
            with self.subTest(reason=reason):
                self.assertEqual(skip_reason(OrderDeliveredEvent.model_validate(payload)), reason)


class TestOrderEventHandler(unittest.TestCase):

    def setUp(self):
        self.engine = make_engine()
        self.handler = OrderEventHandler(self.engine)

    def handle(self, **overrides):
        return self.handler.handle(OrderDeliveredEvent.model_validate(order_event(**overrides)))

    def test_delivered_order_accrues_default_commission(self):
        """A R1000 order at the default 15% credits R150.00"""
        result = self.handle()

        self.assertEqual(result.status, "accrued")
        self.assertEqual(result.amount, Decimal("150.00"))
        account = self.engine.get_account("admin-1")
        self.assertEqual((account.current_balance, account.pending_balance, account.total_earned), (15000, 0, 15000))
        entries = self.engine.history("admin-1")
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].amount, 15000)
        self.assertEqual(entries[0].description, "Commission from order #GL-1001")

    def test_redelivered_order_is_a_duplicate(self):
        self.handle()
        result = self.handle()

        self.assertEqual(result.status, "duplicate")
        self.assertEqual(self.engine.get_account("admin-1").current_balance, 15000)
        self.assertEqual(len(self.engine.history("admin-1")), 1)

    def test_pre_computed_commission_wins(self):
        result = self.handle(preComputedCommission="120.50", commissionRate="0.30")
        self.assertEqual(result.amount, Decimal("120.50"))

    def test_group_rate(self):
        result = self.handle(commissionRate="0.10")
        self.assertEqual(result.amount, Decimal("100.00"))

    def test_skipped_event_writes_nothing(self):
        result = self.handle(fulfillmentChannel="treehouse")

        self.assertEqual(result.status, "skipped")
        self.assertEqual(result.reason, "platform_fulfilled")
        with self.assertRaises(NotFoundError):
            self.engine.get_account("admin-1")

    def test_non_positive_total_is_skipped(self):
        result = self.handle(orderTotal="0")
        self.assertEqual((result.status, result.reason), ("skipped", "invalid_total"))


class FakeMessage:
    def __init__(self, value):
        self._value = value

    def value(self):
        return self._value

    def error(self):
        return None


class FakeConsumer:
    def __init__(self, messages, stop):
        self.messages = list(messages)
        self.stop = stop
        self.committed = []
        self.closed = False

    def poll(self, timeout):
        if not self.messages:
            self.stop.set()
            return None
        return self.messages.pop(0)

    def commit(self, message, asynchronous):
        self.committed.append(message)

    def close(self):
        self.closed = True


class TestConsumer(unittest.TestCase):

    def setUp(self):
        self.engine = make_engine()
        self.handler = OrderEventHandler(self.engine)

    def test_process_valid_message(self):
        result = consumer.process_message(self.handler, json.dumps(order_event()).encode("utf-8"))
        self.assertEqual(result.status, "accrued")

    def test_malformed_payloads_are_discarded(self):
        for raw in (b"not json", json.dumps({"sourceEventId": "ord-1"}).encode("utf-8")):
            with self.subTest(raw=raw):
                with self.assertLogs("earnings_service.consumer", level="ERROR"):
                    self.assertIsNone(consumer.process_message(self.handler, raw))

    def test_business_errors_are_logged_and_skipped(self):
        raw = json.dumps(order_event(commissionRate="5")).encode("utf-8")
        with self.assertLogs("earnings_service.consumer", level="ERROR") as logs:
            self.assertIsNone(consumer.process_message(self.handler, raw))
        self.assertIn("INVALID_RATE", logs.output[0])

    def test_consume_commits_every_message(self):
        """Offsets advance after each message, including ones that were discarded"""
        stop = threading.Event()
        messages = [
            FakeMessage(json.dumps(order_event()).encode("utf-8")),
            FakeMessage(b"garbage"),
            FakeMessage(json.dumps(order_event()).encode("utf-8")),
        ]
        fake = FakeConsumer(messages, stop)

        with mock.patch.object(consumer, "get_consumer", return_value=fake):
            consumer.consume(self.handler, stop)

        self.assertEqual(len(fake.committed), 3)
        self.assertTrue(fake.closed)
        self.assertEqual(self.engine.get_account("admin-1").current_balance, 15000)


if __name__ == "__main__":
    unittest.main()
