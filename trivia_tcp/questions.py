"""
Question bank and per-session question tracking for the TCP trivia server.

Responsibilities:
- Hold the immutable question records shared by every session.
- Build the built-in networking question set, or load one from questions.txt.
- Give each session its own tracker that draws unused questions at random.

The bank is populated once at startup and frozen before the server accepts
connections. After that it is only read, so sessions never need a lock to use
it. Each session owns a SessionQuestionTracker holding just the set of
question numbers it has already drawn.
"""

import logging
import os
import random
from dataclasses import dataclass
from typing import FrozenSet, Iterator, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

ANSWER_LETTERS = ("a", "b", "c", "d")
DEFAULT_QUESTION_SCORE = 10
ENCODING = "utf-8"


# ---------- Records ----------


@dataclass(frozen=True)
class QuestionRecord:
    """
    One multiple-choice question.

    Fields:
        number:   identifier, unique within a bank
        question: prompt text, usually with the four choices on their own lines
        answer:   correct letter, stored lower-case ("a".."d")
        score:    points awarded for a correct answer
    """

    number: int
    question: str
    answer: str
    score: int

    def __post_init__(self) -> None:
        letter = str(self.answer).strip().lower()
        if letter not in ANSWER_LETTERS:
            raise ValueError(
                f"Question {self.number}: answer must be one of a/b/c/d, got {self.answer!r}"
            )
        if isinstance(self.score, bool) or not isinstance(self.score, int) or self.score <= 0:
            raise ValueError(
                f"Question {self.number}: score must be a positive integer, got {self.score!r}"
            )
        # frozen dataclass, so normalise through object.__setattr__
        object.__setattr__(self, "answer", letter)

    def is_correct(self, letter: str) -> bool:
        """Return True if `letter` matches the correct answer (case-insensitive)."""
        return letter.strip().lower() == self.answer

    def __str__(self) -> str:
        return self.question


class QuestionBank:
    """
    Ordered, read-only collection of QuestionRecord.

    Records are added during startup only. Once freeze() is called the bank
    refuses further additions and can be shared by any number of sessions.
    """

    def __init__(self, records: Optional[List[QuestionRecord]] = None):
        self._records: List[QuestionRecord] = []
        self._numbers: Set[int] = set()
        self._frozen = False
        for record in records or []:
            self.add(record)

    def add(self, record: QuestionRecord) -> None:
        """Append a record. Raises ValueError on duplicate numbers or a frozen bank."""
        if self._frozen:
            raise ValueError("Question bank is frozen; no more records can be added")
        if record.number in self._numbers:
            raise ValueError(f"Duplicate question number {record.number}")
        self._records.append(record)
        self._numbers.add(record.number)

    def freeze(self) -> "QuestionBank":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def all_records(self) -> Tuple[QuestionRecord, ...]:
        """Return every record in insertion order as an immutable tuple."""
        return tuple(self._records)

    def total_score(self) -> int:
        return sum(record.score for record in self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[QuestionRecord]:
        return iter(tuple(self._records))


# ---------- Per-session tracker ----------


class SessionQuestionTracker:
    """
    Per-session view over a shared QuestionBank.

    Only the numbers already drawn are stored here; the records themselves
    stay in the bank. Two trackers over the same bank never affect each other.
    """

    def __init__(self, bank: QuestionBank, rng: Optional[random.Random] = None):
        self.bank = bank
        self._used: Set[int] = set()
        self._rng = rng or random.Random()

    def draw_unused(self) -> Optional[QuestionRecord]:
        """
        Pick a random question this session has not seen yet.

        The choice is uniform over the records still eligible, not over the
        whole bank. The chosen number is marked as used before returning.

        Returns:
            The drawn QuestionRecord, or None once every record has been used.
        """
        available = [
            record for record in self.bank.all_records() if record.number not in self._used
        ]
        if not available:
            return None

        selected = self._rng.choice(available)
        self._used.add(selected.number)
        return selected

    def reset(self) -> None:
        """Forget every drawn question so the full bank is available again."""
        self._used.clear()

    @property
    def used_numbers(self) -> FrozenSet[int]:
        return frozenset(self._used)

    def remaining(self) -> int:
        return sum(1 for record in self.bank.all_records() if record.number not in self._used)


# ---------- Built-in question set ----------


def build_default_question_bank() -> QuestionBank:
    """
    Create the built-in computer networking question bank.

    Questions 1-10 are basic (10 points), 11-13 are advanced (20 points).
    """
    bank = QuestionBank()

    bank.add(QuestionRecord(
        1,
        "What is the formula for transmission delay in Packet Switching? (L=bits, R=bits/sec)\n"
        "a) L*R\n"
        "b) L/R\n"
        "c) R/L\n"
        "d) L+R",
        "b",
        10,
    ))
    bank.add(QuestionRecord(
        2,
        "Which transport layer protocol does HTTP use?\n"
        "a) UDP\n"
        "b) IP\n"
        "c) TCP\n"
        "d) DNS",
        "c",
        10,
    ))
    bank.add(QuestionRecord(
        3,
        "What port number is used for SMTP (email transmission)?\n"
        "a) 20\n"
        "b) 21\n"
        "c) 23\n"
        "d) 25",
        "d",
        10,
    ))
    bank.add(QuestionRecord(
        4,
        "What is the main function of DNS?\n"
        "a) Converting IP addresses to email addresses\n"
        "b) Translating hostnames to IP addresses\n"
        "c) Packet routing\n"
        "d) Data encryption",
        "b",
        10,
    ))
    bank.add(QuestionRecord(
        5,
        "How many bits compose an IPv4 address?\n"
        "a) 16 bits\n"
        "b) 32 bits\n"
        "c) 64 bits\n"
        "d) 128 bits",
        "b",
        10,
    ))
    bank.add(QuestionRecord(
        6,
        "What message does a host broadcast in the first step of the DHCP protocol?\n"
        "a) DHCP offer\n"
        "b) DHCP request\n"
        "c) DHCP discover\n"
        "d) DHCP ACK",
        "c",
        10,
    ))
    bank.add(QuestionRecord(
        7,
        "Which of the following is NOT a characteristic of TCP?\n"
        "a) Reliable transmission\n"
        "b) Connection-oriented\n"
        "c) Congestion control\n"
        "d) Connectionless communication",
        "d",
        10,
    ))
    bank.add(QuestionRecord(
        8,
        "What is the main function of a router's data plane?\n"
        "a) Executing routing algorithms\n"
        "b) Computing forwarding tables\n"
        "c) Packet forwarding\n"
        "d) Determining network policies",
        "c",
        10,
    ))
    bank.add(QuestionRecord(
        9,
        "What does TTL represent in an IP datagram?\n"
        "a) Packet lifetime\n"
        "b) Maximum remaining hops\n"
        "c) Transmission delay time\n"
        "d) Packet size",
        "b",
        10,
    ))
    bank.add(QuestionRecord(
        10,
        "What HTTP/1.1 feature allows multiple objects to be sent over a single TCP connection?\n"
        "a) Stateless HTTP\n"
        "b) Non-persistent HTTP\n"
        "c) Persistent HTTP\n"
        "d) Proxy HTTP",
        "c",
        10,
    ))

    # Advanced questions (20 points each)
    bank.add(QuestionRecord(
        11,
        "In a network with a transmission rate of 2 Mbps and a propagation speed of 2 * 10^8 m/s, "
        "if a packet is 1500 bytes and the distance between source and destination is 8000 km, "
        "calculate the total delay (transmission + propagation). Choose the closest answer:\n"
        "a) 46 ms\n"
        "b) 52 ms\n"
        "c) 64 ms\n"
        "d) 78 ms",
        "a",
        20,
    ))
    bank.add(QuestionRecord(
        12,
        "Given a subnet mask of 255.255.254.0 and an IP address of 192.168.5.130, "
        "which of the following statements is correct?\n"
        "a) The network can host 254 devices, and 192.168.5.131 is in the same subnet\n"
        "b) The network can host 510 devices, and 192.168.4.130 is in a different subnet\n"
        "c) The network can host 510 devices, and 192.168.5.131 is in the same subnet\n"
        "d) The network can host 254 devices, and 192.168.6.130 is in the same subnet",
        "c",
        20,
    ))
    bank.add(QuestionRecord(
        13,
        "Which routing algorithm requires every router to know the complete network topology?\n"
        "a) Distance vector\n"
        "b) Link state\n"
        "c) Hot potato\n"
        "d) Path vector",
        "b",
        20,
    ))

    return bank


# ---------- Load questions from questions.txt ----------


def load_questions_from_file(path: str) -> QuestionBank:
    """
    Load a question bank from a text file.

    Each non-empty, non-comment line must have the form:
        <question text>|<correct_option_letter>[|<points>]

    A literal "\\n" inside the question text starts a new line, so the
    choices can be listed one per line:
        Which protocol is connection-oriented?\\na) UDP\\nb) TCP\\nc) IP\\nd) ICMP|b|10

    Invalid lines are skipped with a warning. Questions are numbered in file
    order starting at 1.
    """
    bank = QuestionBank()
    qid = 1

    with open(path, "r", encoding=ENCODING) as f:
        for lineno, raw_line in enumerate(f, 1):
            line = raw_line.strip()

            # Skip empty lines and comment lines
            if not line or line.startswith("#"):
                continue

            parts = [part.strip() for part in line.split("|")]
            if len(parts) not in (2, 3):
                logger.warning("Skipping invalid question line %d in %s: %s", lineno, path, line)
                continue

            text = parts[0].replace("\\n", "\n")
            correct = parts[1].lower()
            points = DEFAULT_QUESTION_SCORE
            if len(parts) == 3:
                try:
                    points = int(parts[2])
                except ValueError:
                    logger.warning(
                        "Skipping line %d in %s, invalid points '%s'", lineno, path, parts[2]
                    )
                    continue

            try:
                bank.add(QuestionRecord(qid, text, correct, points))
            except ValueError as exc:
                logger.warning("Skipping line %d in %s: %s", lineno, path, exc)
                continue
            qid += 1

    logger.info("Loaded %d questions from %s", len(bank), path)
    return bank


def load_question_bank(path: Optional[str] = None) -> QuestionBank:
    """
    Return the bank from `path` if it exists and holds questions, else the
    built-in bank. The returned bank is frozen.
    """
    if path and os.path.exists(path):
        try:
            bank = load_questions_from_file(path)
        except OSError as exc:
            logger.warning("Could not read %s: %s", path, exc)
        else:
            if len(bank):
                return bank.freeze()
            logger.warning("No usable questions in %s, using built-in questions", path)

    bank = build_default_question_bank()
    logger.info("Using %d built-in questions", len(bank))
    return bank.freeze()
