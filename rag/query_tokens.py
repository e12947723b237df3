"""
Query tokenization and best-effort model-backed query expansion.

Tokens are lower-cased alphanumeric words longer than two characters that are
not stop words. Expansion asks the fast model for related keywords and always
falls back to the unexpanded tokens.
"""

import asyncio
import logging
import re
from typing import Awaitable, Callable, Iterable, List, Set

logger = logging.getLogger("kalexam.rag")

STOP_WORDS = frozenset(
   "the and with that from this for your have will into are you what when "
   "where which about topic exam study".split()
)

MAX_EXPANDED_TOKENS = 28
EXPANSION_TIMEOUT_S = 3.0

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_EXPANSION_SPLIT_RE = re.compile(r"[\n;|]")


def tokenize_ordered(text: str, stop_words: Iterable[str] = STOP_WORDS) -> List[str]:
   """Tokenize, keeping first-occurrence order and dropping duplicates."""
   stop = stop_words if isinstance(stop_words, (set, frozenset)) else frozenset(stop_words)
   normalized = _NON_ALNUM_RE.sub(" ", (text or "").lower())
   seen: Set[str] = set()
   tokens: List[str] = []
   for word in normalized.split():
      if len(word) <= 2 or word in stop or word in seen:
         continue
      seen.add(word)
      tokens.append(word)
   return tokens


def tokenize(text: str, stop_words: Iterable[str] = STOP_WORDS) -> Set[str]:
   return set(tokenize_ordered(text, stop_words))


def merge_tokens(*groups: Iterable[str], limit: int = MAX_EXPANDED_TOKENS) -> List[str]:
   """Concatenate token groups, trimming and deduplicating, capped at `limit`."""
   merged: List[str] = []
   seen: Set[str] = set()
   for group in groups:
      for value in group:
         token = value.strip().lower()
         if not token or token in seen:
            continue
         seen.add(token)
         merged.append(token)
   return merged[:limit]


def build_expansion_prompt(query: str, tokens: List[str]) -> str:
   return "\n".join([
      "Expand this query into related academic keywords and synonyms.",
      f"Query: {query}",
      f"Existing tokens: {', '.join(tokens)}",
      "Return only a comma-separated list of 8-14 short keywords.",
   ])


def parse_expansion(raw: str, stop_words: Iterable[str] = STOP_WORDS) -> List[str]:
   pieces = _EXPANSION_SPLIT_RE.sub(",", raw or "").split(",")
   expanded: List[str] = []
   for piece in pieces:
      piece = piece.strip()
      if piece:
         expanded.extend(tokenize_ordered(piece, stop_words))
   return expanded


async def expand_query_tokens(
   query: str,
   tokens: List[str],
   enabled: bool,
   generate: Callable[[str], Awaitable[str]],
   *,
   timeout_s: float = EXPANSION_TIMEOUT_S,
   limit: int = MAX_EXPANDED_TOKENS,
   stop_words: Iterable[str] = STOP_WORDS,
) -> List[str]:
   """
   Enrich `tokens` with model-suggested keywords.

   Args:
      query:     Raw user query
      tokens:    Base tokens from tokenize_ordered(query)
      enabled:   Caller switch; disabled returns tokens untouched
      generate:  Coroutine function prompt -> text (fast model)
      timeout_s: Hard deadline for the model call

   Returns:
      Base tokens followed by new keywords, deduplicated, capped at `limit`.
      Any failure returns `tokens` unchanged.
   """
   if not enabled or not tokens:
      return tokens

   try:
      raw = await asyncio.wait_for(generate(build_expansion_prompt(query, tokens)), timeout=timeout_s)
      expanded = parse_expansion(raw, stop_words)
   except asyncio.TimeoutError:
      logger.debug("Query expansion timed out after %.1fs", timeout_s)
      return tokens
   except Exception as e:
      logger.debug("Query expansion failed: %s", e)
      return tokens

   return merge_tokens(tokens, expanded, limit=limit)
