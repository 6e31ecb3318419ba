import json
import unittest

from duo_chat_bridge.content_extractor import TerminationPolicy, extract
from duo_chat_bridge.models import ContentChunk


def _payload(content, *, chunk_id=1, role="ASSISTANT", more=True) -> dict:
    response = {"content": content, "chunkId": chunk_id, "role": role}
    return {"result": {"data": {"aiCompletionResponse": response}}, "more": more}


class ContentExtractorTests(unittest.TestCase):
    def test_escaped_text_round_trips(self) -> None:
        samples = [
            'say "hi"',
            "C:\\path\\to\\file",
            "line one\nline two",
            "col\tcol",
            'mixed "quote" \\ back\nnew\ttab \\n literal',
            "\\\"already escaped\\\"",
        ]
        for text in samples:
            once = json.dumps(_payload(text))
            for label, encoded in (("string", once), ("double string", json.dumps(once))):
                with self.subTest(text=text, encoding=label):
                    chunk = extract(encoded)
                    self.assertIsNotNone(chunk)
                    self.assertEqual(text, chunk.text)

    def test_object_payload_and_metadata(self) -> None:
        chunk = extract(_payload("Hi", chunk_id=3, role="ASSISTANT"))

        self.assertEqual(ContentChunk(text="Hi", chunk_id=3, role="ASSISTANT", is_final=False), chunk)

    def test_nested_string_encoded_result(self) -> None:
        payload = {"result": json.dumps({"data": {"aiCompletionResponse": {"content": "deep"}}})}

        self.assertEqual("deep", extract(payload).text)

    def test_content_that_looks_like_json_is_not_decoded(self) -> None:
        self.assertEqual('{"a": 1}', extract(_payload('{"a": 1}')).text)

    def test_no_content_field_yields_nothing(self) -> None:
        self.assertIsNone(extract({"result": {"data": {"aiCompletionResponse": None}}, "more": True}))
        self.assertIsNone(extract(json.dumps({"status": "queued"})))

    def test_malformed_payloads_yield_nothing(self) -> None:
        for raw in ("{broken", "plain text", json.dumps(json.dumps(json.dumps(json.dumps("x")))), 42):
            with self.subTest(raw=raw):
                self.assertIsNone(extract(raw))
        self.assertIsNone(extract(_payload(["not", "text"])))

    def test_payloads_the_json_decoder_refuses_yield_nothing(self) -> None:
        huge_number = '{"n": ' + "1" * 5000 + "}"
        too_deep = "[" * 200_000 + "]" * 200_000

        for raw in (huge_number, too_deep, {"result": too_deep}, {"result": huge_number}):
            with self.subTest(kind=type(raw).__name__):
                self.assertIsNone(extract(raw))


class TerminationPolicyTests(unittest.TestCase):
    def test_empty_content_ends_stream_by_default(self) -> None:
        self.assertTrue(extract(_payload("")).is_final)
        self.assertFalse(extract(_payload("", more=True), TerminationPolicy(on_empty_content=False)).is_final)

    def test_end_marker(self) -> None:
        self.assertTrue(extract(_payload("last", more=False)).is_final)
        self.assertFalse(extract(_payload("last", more=False), TerminationPolicy(on_end_marker=False)).is_final)

    def test_end_marker_without_content(self) -> None:
        chunk = extract({"result": {"data": {}}, "more": False})

        self.assertEqual(ContentChunk(text="", is_final=True), chunk)

    def test_null_chunk_id_with_role_is_opt_in(self) -> None:
        policy = TerminationPolicy(on_null_chunk_id_with_role=True)

        self.assertFalse(extract(_payload("full", chunk_id=None)).is_final)
        self.assertTrue(extract(_payload("full", chunk_id=None), policy).is_final)
        self.assertFalse(extract(_payload("full", chunk_id=None, role=None), policy).is_final)

    def test_null_content_with_final_signal(self) -> None:
        policy = TerminationPolicy(on_null_chunk_id_with_role=True)

        self.assertIsNone(extract(_payload(None, chunk_id=None)))
        self.assertEqual("", extract(_payload(None, chunk_id=None), policy).text)


if __name__ == "__main__":
    unittest.main()
