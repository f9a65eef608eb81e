# -*- coding: utf-8 -*-

from __future__ import annotations

import json
import unittest

from twinforge.generation.kinds import MEAL_PLAN
from twinforge.generation.events import StreamEventParser
from twinforge.generation.models import CompleteEvent, ErrorEvent, SkeletonCountEvent, UnitEvent


def sse(event: str, data: object) -> bytes:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n".encode("utf-8")


class TestStreamEventParser(unittest.TestCase):
    def test_split_exactly_at_delimiter_yields_one_event(self) -> None:
        frame = sse("skeletonCount", {"total": 7})
        head, tail = frame[:-1], frame[-1:]
        parser = StreamEventParser()
        self.assertEqual(parser.feed(head), [])
        events = parser.feed(tail)
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0], SkeletonCountEvent(total=7))
        self.assertEqual(parser.flush(), [])

    def test_split_inside_payload_and_multiple_frames_per_chunk(self) -> None:
        data = sse("recipe", {"index": 0, "title": "Soup"}) + sse("recipe", {"index": 1, "title": "Salad"})
        parser = StreamEventParser(key_for=lambda p: str(p["index"]))
        events = []
        for i in range(0, len(data), 5):
            events.extend(parser.feed(data[i : i + 5]))
        self.assertEqual([e.key for e in events], ["0", "1"])
        self.assertEqual(events[1].payload["title"], "Salad")

    def test_multibyte_character_split_across_chunks(self) -> None:
        data = sse("recipe", {"title": "Crème brûlée"})
        cut = data.index("è".encode("utf-8")) + 1
        parser = StreamEventParser()
        events = parser.feed(data[:cut]) + parser.feed(data[cut:])
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].payload["title"], "Crème brûlée")

    def test_typed_data_records_without_event_line(self) -> None:
        lines = [
            {"type": "skeleton", "day_count": 7},
            {"type": "day", "data": {"date": "2025-01-06T00:00:00", "meals": []}},
            {"type": "complete", "data": {"id": "plan-9", "summary": {"days": 7}}},
        ]
        raw = "".join(f"data: {json.dumps(line)}\r\n\r\n" for line in lines).encode()
        parser = StreamEventParser(key_for=MEAL_PLAN.key_for)
        events = parser.feed(raw)
        self.assertEqual(len(events), 3)
        self.assertEqual(events[0].total, 7)
        self.assertIsInstance(events[1], UnitEvent)
        self.assertEqual(events[1].key, "2025-01-06")
        self.assertEqual(events[2], CompleteEvent(artifact_id="plan-9", summary={"days": 7}))

    def test_malformed_and_unknown_records_are_skipped(self) -> None:
        raw = (
            b": keep-alive\n\n"
            b"event: recipe\ndata: {not json\n\n"
            b"event: mystery\ndata: {\"a\": 1}\n\n"
            b"event: skeletonCount\ndata: {\"total\": 0}\n\n"
            b"data: [DONE]\n\n"
            + sse("error", {"error": "quota exceeded"})
        )
        parser = StreamEventParser()
        events = parser.feed(raw)
        self.assertEqual(events, [ErrorEvent(message="quota exceeded")])
        self.assertEqual(parser.skipped, 3)

    def test_explicit_key_wins_over_extractor(self) -> None:
        parser = StreamEventParser(key_for=lambda p: "from-payload")
        events = parser.feed(sse("unit", {"key": "k1", "payload": {"x": 1}}))
        self.assertEqual(events[0].key, "k1")
        self.assertEqual(events[0].payload, {"x": 1})

    def test_unit_without_derivable_key(self) -> None:
        parser = StreamEventParser(key_for=lambda p: None)
        events = parser.feed(sse("recipe", {"title": "Stew"}))
        self.assertIsNone(events[0].key)

    def test_flush_emits_unterminated_record(self) -> None:
        parser = StreamEventParser()
        self.assertEqual(parser.feed(b'event: done\ndata: {"artifactId": "a1"}'), [])
        events = parser.flush()
        self.assertEqual(events, [CompleteEvent(artifact_id="a1", summary={})])

    def test_multi_line_data_is_joined(self) -> None:
        parser = StreamEventParser()
        events = parser.feed(b'event: category\ndata: {"index": 2,\ndata:  "items": []}\n\n')
        self.assertEqual(events[0].payload, {"index": 2, "items": []})

    def test_order_preserved(self) -> None:
        parser = StreamEventParser(key_for=lambda p: str(p["index"]))
        raw = b"".join(sse("category", {"index": i, "items": []}) for i in (3, 1, 2))
        self.assertEqual([e.key for e in parser.feed(raw)], ["3", "1", "2"])


if __name__ == "__main__":
    unittest.main()
