"""QuizNet trivia: a multi-client TCP quiz server and its clients."""

__version__ = "1.0.0"
