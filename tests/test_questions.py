"""
Unit tests for question records, the bank and the per-session tracker.
"""
import logging
import os
import random
import tempfile
import unittest

from trivia_tcp.questions import (
    QuestionBank,
    QuestionRecord,
    SessionQuestionTracker,
    build_default_question_bank,
    load_question_bank,
    load_questions_from_file,
)
from tests.test_fixtures import TestFixtures


class TestQuestionRecord(unittest.TestCase):

    def test_answer_is_normalised_to_lower_case(self):
        record = QuestionRecord(1, "Q?", " B ", 10)
        self.assertEqual(record.answer, "b")

    def test_is_correct_ignores_case(self):
        record = QuestionRecord(1, "Q?", "c", 10)
        self.assertTrue(record.is_correct("C"))
        self.assertTrue(record.is_correct("c"))
        self.assertFalse(record.is_correct("a"))

    def test_invalid_answer_letter_rejected(self):
        with self.assertRaises(ValueError):
            QuestionRecord(1, "Q?", "e", 10)

    def test_non_positive_score_rejected(self):
        with self.assertRaises(ValueError):
            QuestionRecord(1, "Q?", "a", 0)
        with self.assertRaises(ValueError):
            QuestionRecord(1, "Q?", "a", -5)

    def test_boolean_score_rejected(self):
        with self.assertRaises(ValueError):
            QuestionRecord(1, "Q?", "a", True)

    def test_record_is_immutable(self):
        record = QuestionRecord(1, "Q?", "a", 10)
        with self.assertRaises(AttributeError):
            record.score = 99

    def test_str_is_prompt_text(self):
        record = QuestionRecord(1, "Line one\na) x", "a", 10)
        self.assertEqual(str(record), "Line one\na) x")


class TestQuestionBank(unittest.TestCase):

    def test_all_records_keeps_insertion_order(self):
        bank = QuestionBank()
        for n in (3, 1, 2):
            bank.add(QuestionRecord(n, f"Q{n}", "a", 10))
        self.assertEqual([r.number for r in bank.all_records()], [3, 1, 2])
        self.assertIsInstance(bank.all_records(), tuple)

    def test_duplicate_number_rejected(self):
        bank = QuestionBank([QuestionRecord(1, "Q1", "a", 10)])
        with self.assertRaises(ValueError):
            bank.add(QuestionRecord(1, "Other", "b", 10))
        self.assertEqual(len(bank), 1)

    def test_frozen_bank_rejects_additions(self):
        bank = TestFixtures.small_bank(2)
        self.assertTrue(bank.frozen)
        with self.assertRaises(ValueError):
            bank.add(QuestionRecord(9, "Q9", "a", 10))

    def test_default_bank_contents(self):
        bank = build_default_question_bank()
        records = bank.all_records()
        self.assertEqual(len(records), 13)
        self.assertEqual(len({r.number for r in records}), 13)
        self.assertEqual([r.score for r in records].count(20), 3)
        self.assertEqual(bank.total_score(), 10 * 10 + 3 * 20)
        for record in records:
            self.assertIn("\na) ", record.question)
            self.assertIn("\nd) ", record.question)


class TestSessionQuestionTracker(unittest.TestCase):

    def setUp(self):
        self.bank = TestFixtures.small_bank(5)

    def test_draws_each_question_once_then_exhausts(self):
        tracker = SessionQuestionTracker(self.bank, random.Random(1))
        drawn = [tracker.draw_unused() for _ in range(5)]
        self.assertEqual(sorted(r.number for r in drawn), [1, 2, 3, 4, 5])
        self.assertIsNone(tracker.draw_unused())
        self.assertIsNone(tracker.draw_unused())
        self.assertEqual(tracker.remaining(), 0)

    def test_used_numbers_tracks_draws(self):
        tracker = SessionQuestionTracker(self.bank, random.Random(2))
        first = tracker.draw_unused()
        self.assertEqual(tracker.used_numbers, frozenset({first.number}))
        self.assertEqual(tracker.remaining(), 4)

    def test_reset_allows_redraw(self):
        tracker = SessionQuestionTracker(self.bank, random.Random(3))
        for _ in range(5):
            tracker.draw_unused()
        tracker.reset()
        self.assertEqual(tracker.remaining(), 5)
        self.assertIsNotNone(tracker.draw_unused())

    def test_trackers_are_independent(self):
        first = SessionQuestionTracker(self.bank, random.Random(4))
        second = SessionQuestionTracker(self.bank, random.Random(4))
        for _ in range(5):
            first.draw_unused()
        self.assertIsNone(first.draw_unused())
        self.assertEqual(second.remaining(), 5)
        self.assertIsNotNone(second.draw_unused())

    def test_draw_is_limited_to_unused_records(self):
        bank = TestFixtures.small_bank(2)
        for seed in range(20):
            tracker = SessionQuestionTracker(bank, random.Random(seed))
            a = tracker.draw_unused()
            b = tracker.draw_unused()
            self.assertNotEqual(a.number, b.number)

    def test_draw_covers_every_eligible_record(self):
        seen = set()
        tracker = SessionQuestionTracker(self.bank, random.Random(5))
        for _ in range(200):
            tracker.reset()
            seen.add(tracker.draw_unused().number)
        self.assertEqual(seen, {1, 2, 3, 4, 5})

    def test_empty_bank_is_exhausted(self):
        tracker = SessionQuestionTracker(QuestionBank())
        self.assertIsNone(tracker.draw_unused())


class TestQuestionFileLoading(unittest.TestCase):

    def setUp(self):
        logging.disable(logging.CRITICAL)
        self.tmpdir = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmpdir.cleanup()
        logging.disable(logging.NOTSET)

    def write_file(self, content: str) -> str:
        path = os.path.join(self.tmpdir.name, "questions.txt")
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        return path

    def test_parses_valid_lines(self):
        path = self.write_file(
            "# comment\n"
            "\n"
            "Which is reliable?\\na) UDP\\nb) TCP\\nc) IP\\nd) ICMP|B|15\n"
            "Which is connectionless?\\na) UDP\\nb) TCP\\nc) SCTP\\nd) QUIC|a\n"
        )
        bank = load_questions_from_file(path)
        records = bank.all_records()
        self.assertEqual(len(records), 2)
        self.assertEqual(records[0].number, 1)
        self.assertEqual(records[0].answer, "b")
        self.assertEqual(records[0].score, 15)
        self.assertEqual(records[0].question.split("\n")[0], "Which is reliable?")
        self.assertEqual(records[1].score, 10)

    def test_skips_invalid_lines(self):
        path = self.write_file(
            "no separator here\n"
            "Bad letter|x\n"
            "Bad points|a|lots\n"
            "Zero points|a|0\n"
            "Good one|c\n"
        )
        bank = load_questions_from_file(path)
        self.assertEqual([(r.number, r.answer) for r in bank.all_records()], [(1, "c")])

    def test_load_question_bank_falls_back_to_builtin(self):
        bank = load_question_bank(os.path.join(self.tmpdir.name, "missing.txt"))
        self.assertEqual(len(bank), 13)
        self.assertTrue(bank.frozen)

    def test_load_question_bank_falls_back_when_file_has_no_questions(self):
        path = self.write_file("# only comments\n")
        self.assertEqual(len(load_question_bank(path)), 13)

    def test_load_question_bank_uses_file(self):
        path = self.write_file("Only question|d|30\n")
        bank = load_question_bank(path)
        self.assertEqual(len(bank), 1)
        self.assertTrue(bank.frozen)


if __name__ == '__main__':
    unittest.main()
