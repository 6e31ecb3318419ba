import json
import unittest

from duo_chat_bridge.message_classifier import (
    DataPayload,
    Disconnect,
    Heartbeat,
    Ignored,
    SubscriptionConfirmed,
    SubscriptionRejected,
    Welcome,
    classify,
)


def _frame(**fields) -> str:
    return json.dumps(fields)


class MessageClassifierTests(unittest.TestCase):
    def test_control_frames(self) -> None:
        self.assertEqual(Welcome(), classify(_frame(type="welcome")))
        self.assertEqual(Heartbeat(), classify(_frame(type="ping", message=1700000000)))
        self.assertEqual(
            SubscriptionConfirmed(identifier="{}"),
            classify(_frame(type="confirm_subscription", identifier="{}")),
        )

    def test_reject_carries_reason(self) -> None:
        default = classify(_frame(type="reject_subscription", identifier="{}"))
        explicit = classify(_frame(type="reject_subscription", reason="forbidden"))

        self.assertIsInstance(default, SubscriptionRejected)
        self.assertEqual("subscription rejected by server", default.reason)
        self.assertEqual("forbidden", explicit.reason)

    def test_confirm_marker_wins_over_payload_fields(self) -> None:
        message = _frame(
            type="confirm_subscription",
            identifier="{}",
            message={"content": "hello", "chunkId": 1},
            content="top-level",
        )

        self.assertIsInstance(classify(message), SubscriptionConfirmed)

    def test_disconnect(self) -> None:
        result = classify(_frame(type="disconnect", reason="unauthorized", reconnect=False))

        self.assertEqual(Disconnect(reason="unauthorized", reconnect=False), result)

    def test_data_payload_keeps_raw_message(self) -> None:
        raw = json.dumps({"result": {"data": {"aiCompletionResponse": {"content": "x"}}}})

        result = classify(_frame(identifier="{}", message=raw))

        self.assertEqual(DataPayload(raw_payload=raw, identifier="{}"), result)

    def test_unrecognised_frames_are_ignored(self) -> None:
        for message in ("", "not json", "[1, 2]", '"text"', _frame(type="mystery"), _frame(other=1)):
            with self.subTest(message=message):
                self.assertIsInstance(classify(message), Ignored)

    def test_frames_the_json_decoder_refuses_are_ignored(self) -> None:
        huge_number = '{"type": "x", "n": ' + "1" * 5000 + "}"
        too_deep = "[" * 200_000 + "]" * 200_000

        for message in (huge_number, too_deep):
            with self.subTest(size=len(message)):
                self.assertIsInstance(classify(message), Ignored)


if __name__ == "__main__":
    unittest.main()
