"""
Line protocol for one trivia session.

Wire format:
- Every line is UTF-8 and ends with "\\n".
- Server -> client lines start with "Server> ". A message with embedded
  newlines (a question with its choices) goes out as several prefixed lines.
- Client -> server lines are bare commands, trimmed and case-insensitive:
  "quiz", "finish" or one of "a"/"b"/"c"/"d".

Session flow (SessionProtocol):
    AWAITING_COMMAND --quiz--> AWAITING_ANSWER --a/b/c/d--> AWAITING_COMMAND
    any live state --finish--> TERMINATED
    question limit or bank exhausted -> TERMINATED

Clients recognise the end of a session by "Final Score:" or "Goodbye!" in a
line, and know the server is waiting for them when a line contains one of
INPUT_PROMPT_MARKERS. Every reply sequence below ends with such a line.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .questions import ANSWER_LETTERS, QuestionRecord, SessionQuestionTracker

logger = logging.getLogger(__name__)

ENCODING = "utf-8"
SERVER_PREFIX = "Server> "
MAX_QUIZ_COUNT = 5  # Questions per session

CMD_QUIZ = "quiz"
CMD_FINISH = "finish"

SESSION_END_MARKERS = ("Final Score:", "Goodbye!")
INPUT_PROMPT_MARKERS = ("(a/b/c/d)", "Commands:", "'quiz'")

# ====== SERVER MESSAGES ======
MSG_WELCOME = "Welcome to the Network Quiz Server!"
MSG_COMMANDS = "Commands: 'quiz' for a new question, 'finish' to exit"
MSG_SELECT_ANSWER = "Please select your answer (a/b/c/d):"
MSG_NEXT_QUESTION = "Type 'quiz' for the next question!"
MSG_NO_MORE_QUESTIONS = "No more questions available."
MSG_QUIZ_COMPLETED = "Quiz completed!"
MSG_THANK_YOU = "Thank you for playing! Goodbye!"
MSG_GOODBYE = "Goodbye!"
MSG_QUIZ_FIRST = "Please request a quiz first by typing 'quiz'"
MSG_INVALID_COMMAND = "Invalid input. Please type 'quiz' for a new question or 'finish' to exit"
MSG_INVALID_ANSWER = "Invalid input. Please select your answer (a/b/c/d) or type 'finish' to exit"


class ProtocolState(Enum):
    AWAITING_COMMAND = "awaiting_command"
    AWAITING_ANSWER = "awaiting_answer"
    TERMINATED = "terminated"


@dataclass
class SessionState:
    """Mutable score keeping for one connection."""

    current_question: Optional[QuestionRecord] = None
    total_score: int = 0
    questions_issued: int = 0
    max_possible_score: int = 0


# ---------- Message formatting ----------


def quiz_header(index: int, limit: int) -> str:
    return f"Quiz {index}/{limit}"


def correct_message(points: int) -> str:
    return f"Correct! You get {points} points!"


def incorrect_message(correct_letter: str) -> str:
    return f"Incorrect. The correct answer is {correct_letter}. You get 0 points."


def total_score_message(total: int) -> str:
    return f"Total score: {total}"


def summary_message(total: int, maximum: int) -> str:
    return f"Final Score: {total} out of {maximum} possible points"


def final_score_message(total: int) -> str:
    return f"Final Score: {total}"


def all_quizzes_completed_message(limit: int) -> str:
    return f"You've completed all {limit} quizzes!"


def encode_message(message: str) -> bytes:
    """
    Turn one server message into wire bytes.

    Each physical line of `message` gets the "Server> " prefix and a
    trailing newline.
    """
    lines = message.split("\n")
    return "".join(f"{SERVER_PREFIX}{line}\n" for line in lines).encode(ENCODING)


def strip_server_prefix(line: str) -> str:
    """Remove the "Server> " prefix (and line ending) from a received line."""
    line = line.rstrip("\r\n")
    if line.startswith(SERVER_PREFIX):
        return line[len(SERVER_PREFIX):]
    return line


def is_session_end(text: str) -> bool:
    """True if a (prefix-stripped) server line marks the end of the session."""
    return any(marker in text for marker in SESSION_END_MARKERS)


def expects_reply(text: str) -> bool:
    """True if a (prefix-stripped) server line asks the client to type something."""
    return any(marker in text for marker in INPUT_PROMPT_MARKERS)


# ---------- State machine ----------


class SessionProtocol:
    """
    Interpret inbound lines for one session and produce the replies.

    The protocol does no I/O: handle_line() returns the messages to send and
    updates `state` / `phase`. The caller writes the replies before reading
    the next line, and closes the connection once `terminated` is True.
    """

    def __init__(self, tracker: SessionQuestionTracker, question_limit: int = MAX_QUIZ_COUNT):
        if question_limit < 0:
            raise ValueError("question_limit must not be negative")
        self.tracker = tracker
        self.question_limit = question_limit
        self.state = SessionState()
        self.phase = ProtocolState.AWAITING_COMMAND

    @property
    def terminated(self) -> bool:
        return self.phase is ProtocolState.TERMINATED

    def welcome(self) -> List[str]:
        return [MSG_WELCOME, MSG_COMMANDS]

    def connection_closed(self) -> None:
        """The transport went away; nothing can be sent any more."""
        self.phase = ProtocolState.TERMINATED

    def handle_line(self, line: str) -> List[str]:
        """
        Process one inbound line and return the outbound messages.

        Unknown input never raises: the client gets a hint and the state
        stays where it was. Lines received after termination are ignored.
        """
        if self.terminated:
            return []

        command = line.strip().lower()

        if command == CMD_FINISH:
            return self._finish()

        if self.phase is ProtocolState.AWAITING_ANSWER:
            if command in ANSWER_LETTERS:
                return self._answer(command)
            return [MSG_INVALID_ANSWER]

        # AWAITING_COMMAND
        if command == CMD_QUIZ:
            return self._next_question()
        if command in ANSWER_LETTERS:
            return [MSG_QUIZ_FIRST]
        return [MSG_INVALID_COMMAND]

    # ----- transitions -----

    def _finish(self) -> List[str]:
        self.phase = ProtocolState.TERMINATED
        self.state.current_question = None
        return [final_score_message(self.state.total_score), MSG_GOODBYE]

    def _summary(self) -> str:
        return summary_message(self.state.total_score, self.state.max_possible_score)

    def _next_question(self) -> List[str]:
        state = self.state

        if state.questions_issued >= self.question_limit:
            self.phase = ProtocolState.TERMINATED
            return [
                all_quizzes_completed_message(self.question_limit),
                self._summary(),
                MSG_THANK_YOU,
            ]

        record = self.tracker.draw_unused()
        if record is None:
            self.phase = ProtocolState.TERMINATED
            return [MSG_NO_MORE_QUESTIONS, self._summary(), MSG_THANK_YOU]

        state.questions_issued += 1
        state.max_possible_score += record.score
        state.current_question = record
        self.phase = ProtocolState.AWAITING_ANSWER
        logger.debug("Issued question %d (%d/%d)", record.number,
                     state.questions_issued, self.question_limit)

        return [
            quiz_header(state.questions_issued, self.question_limit),
            str(record),
            MSG_SELECT_ANSWER,
        ]

    def _answer(self, letter: str) -> List[str]:
        state = self.state
        record = state.current_question
        if record is None:
            # Should not happen in AWAITING_ANSWER; recover instead of crashing.
            self.phase = ProtocolState.AWAITING_COMMAND
            return [MSG_QUIZ_FIRST]

        if record.is_correct(letter):
            state.total_score += record.score
            replies = [correct_message(record.score)]
        else:
            replies = [incorrect_message(record.answer)]
        replies.append(total_score_message(state.total_score))

        state.current_question = None
        if state.questions_issued >= self.question_limit:
            self.phase = ProtocolState.TERMINATED
            replies.extend([MSG_QUIZ_COMPLETED, self._summary(), MSG_THANK_YOU])
        else:
            self.phase = ProtocolState.AWAITING_COMMAND
            replies.append(MSG_NEXT_QUESTION)
        return replies
