"""
Block matcher.

Pairs desired blocks with existing blocks so surviving blocks keep their uid:

1. exact text match (whitespace-trimmed)
2. text match ignoring a leading `1. ` style list prefix
3. position fallback, only when both sides have few leftovers
"""
from typing import TYPE_CHECKING, Iterable
import logging
import re

from .structs import Block

if TYPE_CHECKING:
    from .diff import ExistingBlock

logger = logging.getLogger(__name__)

# Position matching beyond this many leftovers on either side is a guess.
POSITION_FALLBACK_LIMIT = 3

_LIST_PREFIX_RE = re.compile(r"^\d+\.\s+")


def normalize_text(text: str) -> str:
    return text.strip()


def normalize_for_matching(text: str) -> str:
    return _LIST_PREFIX_RE.sub("", text.strip())


def _index(existing: Iterable["ExistingBlock"], key) -> dict[str, list["ExistingBlock"]]:
    index: dict[str, list["ExistingBlock"]] = {}
    for eb in existing:
        index.setdefault(key(eb.text), []).append(eb)
    return index


def _match_by(
        index: dict[str, list["ExistingBlock"]],
        key,
        new_blocks: list[Block],
        matches: dict[str, str],
        used: set[str],
    ):
    for idx, block in enumerate(new_blocks):
        if block.uid in matches:
            continue
        candidates = [e for e in index.get(key(block.text), []) if e.uid not in used]
        if not candidates:
            continue
        # Closest order wins; min() keeps the first candidate on ties.
        position = block.order if isinstance(block.order, int) else idx
        best = min(candidates, key=lambda e: abs(e.order - position))
        matches[block.uid] = best.uid
        used.add(best.uid)


def match_blocks(
        existing: list["ExistingBlock"],
        new_blocks: list[Block],
        position_fallback_limit: int = POSITION_FALLBACK_LIMIT,
    ) -> dict[str, str]:
    """
    Match desired blocks to existing blocks.

    `existing` is the flattened existing tree, `new_blocks` the desired blocks
    in document order. Returns a mapping of desired uid -> existing uid in
    which every existing uid appears at most once.
    """
    matches: dict[str, str] = {}
    used: set[str] = set()

    _match_by(_index(existing, normalize_text), normalize_text, new_blocks, matches, used)
    exact = len(matches)
    _match_by(_index(existing, normalize_for_matching), normalize_for_matching, new_blocks, matches, used)
    normalized = len(matches) - exact

    unmatched_new = [b for b in new_blocks if b.uid not in matches]
    unmatched_existing = [e for e in existing if e.uid not in used]
    positional = 0
    if len(unmatched_new) <= position_fallback_limit and len(unmatched_existing) <= position_fallback_limit:
        for block, eb in zip(unmatched_new, sorted(unmatched_existing, key=lambda e: e.order)):
            matches[block.uid] = eb.uid
            used.add(eb.uid)
            positional += 1

    logger.debug(
        f"Matched {len(matches)}/{len(new_blocks)} blocks "
        f"(exact={exact}, normalized={normalized}, position={positional})"
    )
    return matches


def group_by_parent(blocks: list["ExistingBlock"]) -> dict[str | None, list["ExistingBlock"]]:
    """Group existing blocks by parent uid, each group sorted by order."""
    groups: dict[str | None, list["ExistingBlock"]] = {}
    for block in blocks:
        groups.setdefault(block.parent_uid, []).append(block)
    for siblings in groups.values():
        siblings.sort(key=lambda b: b.order)
    return groups
