import shutil
import unittest
from pathlib import Path
from uuid import uuid4

from loguru import logger

from duo_chat_bridge.__main__ import describe_outcome
from duo_chat_bridge.errors import TransportClosedError
from duo_chat_bridge.logging_config import setup_logging
from duo_chat_bridge.models import Completed, Rejected, TimedOut, TransportError

PROJECT_ROOT = Path(__file__).resolve().parents[1]


class LoggingConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp_dir = PROJECT_ROOT / ".test-artifacts" / f"logging-{uuid4().hex}"
        self._tmp_dir.mkdir(parents=True, exist_ok=True)

    def tearDown(self) -> None:
        logger.remove()
        shutil.rmtree(self._tmp_dir, ignore_errors=True)

    def test_file_consumer_tags_session(self) -> None:
        log_path = self._tmp_dir / "chat.log"

        descriptions = setup_logging(
            level="DEBUG",
            consumers=[{"type": "file", "path": str(log_path)}, {"type": "bogus"}],
        )
        with logger.contextualize(session="S-1"):
            logger.info("inside")
        logger.info("outside")
        logger.remove()

        self.assertEqual([f"file ({log_path}, text, DEBUG)"], descriptions)
        lines = log_path.read_text().splitlines()
        self.assertIn("| S-1 |", lines[0])
        self.assertIn("| - |", lines[1])


class DescribeOutcomeTests(unittest.TestCase):
    def test_notices(self) -> None:
        self.assertIsNone(describe_outcome(Completed(answer="hi")))
        self.assertIn("not sent", describe_outcome(TimedOut(answer="", phase="confirmation")))
        self.assertIn("incomplete", describe_outcome(TimedOut(answer="par", phase="stream")))
        self.assertIn("forbidden", describe_outcome(Rejected(reason="forbidden")))
        self.assertIn("gone", describe_outcome(TransportError(cause=TransportClosedError("gone"))))


if __name__ == "__main__":
    unittest.main()
