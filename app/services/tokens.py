"""Token counting utilities."""
from functools import lru_cache

import tiktoken


@lru_cache
def _encoding() -> tiktoken.Encoding:
    # cl100k_base works for most modern models; loaded on first use
    return tiktoken.get_encoding("cl100k_base")


def count_text_tokens(text: str) -> int:
    """Count tokens in a text string."""
    return len(_encoding().encode(text))
