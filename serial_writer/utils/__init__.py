from .logger import reset_logger, run_context, setup_logger
from .progress import create_progress, describe_status
from .text import (
    clean_content,
    count_words,
    detect_language,
    first_sentence,
    last_sentence,
    parse_json_response,
    split_sentences,
    truncate_text,
)

__all__ = [
    "setup_logger",
    "run_context",
    "reset_logger",
    "create_progress",
    "describe_status",
    "clean_content",
    "count_words",
    "detect_language",
    "first_sentence",
    "last_sentence",
    "parse_json_response",
    "split_sentences",
    "truncate_text",
]
