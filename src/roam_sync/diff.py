"""
Smart diff between the blocks already stored under a page (or block) and the
blocks described by fresh markdown.

Usage:

    existing = parse_existing_blocks(page)
    new_blocks = gfm_to_blocks(markdown, page_uid)
    diff = diff_block_trees(existing, new_blocks, page_uid)
    actions = generate_batch_actions(diff)

Matched blocks keep their uid and only receive `update-block` / `move-block`
actions, so references to them survive the sync.
"""
from dataclasses import dataclass, field
from typing import Any, Iterable
import logging

from .actions import create_block, update_block, move_block, remove_block
from .matcher import match_blocks, normalize_text
from .structs import Block

logger = logging.getLogger(__name__)

ACTION_TYPES = ("create-block", "update-block", "move-block", "delete-block")


class UnresolvedParentError(ValueError):
    """A desired block points at a parent that is neither the root nor a known block."""


@dataclass
class ExistingBlock:
    uid: str
    text: str
    order: int
    heading: int | None
    parent_uid: str | None
    children: list["ExistingBlock"] = field(default_factory=list)


@dataclass
class DiffResult:
    creates: list[dict] = field(default_factory=list)
    updates: list[dict] = field(default_factory=list)
    moves: list[dict] = field(default_factory=list)
    deletes: list[dict] = field(default_factory=list)
    preserved_uids: set[str] = field(default_factory=set)
    warnings: list[str] = field(default_factory=list)

    def stats(self) -> dict[str, int]:
        return {
            "creates": len(self.creates),
            "updates": len(self.updates),
            "moves": len(self.moves),
            "deletes": len(self.deletes),
            "preserved": len(self.preserved_uids),
        }

    def is_empty(self) -> bool:
        return not (self.creates or self.updates or self.moves or self.deletes)


#
# Existing tree
#

def _sorted_children(raw: dict[str, Any]) -> list[dict[str, Any]]:
    return sorted(raw.get(":block/children") or [], key=lambda c: c.get(":block/order") or 0)


def parse_existing_block(raw: dict[str, Any], parent_uid: str | None = None) -> ExistingBlock:
    uid = raw.get(":block/uid") or ""
    return ExistingBlock(
        uid=uid,
        text=raw.get(":block/string") or "",
        order=raw.get(":block/order") or 0,
        # Roam stores 0 once a heading has been unset.
        heading=raw.get(":block/heading") or None,
        parent_uid=parent_uid,
        children=[parse_existing_block(c, uid) for c in _sorted_children(raw)],
    )


def parse_existing_blocks(page: dict[str, Any]) -> list[ExistingBlock]:
    """Top-level blocks of a pulled page (or block); their parent_uid is None."""
    return [parse_existing_block(c, None) for c in _sorted_children(page)]


def flatten_existing_blocks(blocks: Iterable[ExistingBlock]) -> list[ExistingBlock]:
    """Depth-first list of every block; parents come before their children."""
    result: list[ExistingBlock] = []
    seen: set[int] = set()

    def flatten(block: ExistingBlock):
        if id(block) in seen:
            return
        seen.add(id(block))
        result.append(block)
        for child in block.children:
            flatten(child)

    for block in blocks:
        flatten(block)
    return result


#
# Diff
#

def diff_block_trees(
        existing: list[ExistingBlock],
        new_blocks: list[Block],
        parent_uid: str,
    ) -> DiffResult:
    """
    Compute the actions turning `existing` into `new_blocks` under `parent_uid`.

    `existing` may be the top-level trees or an already flattened list.
    `new_blocks` is flat, in document order, with parents before children.
    """
    result = DiffResult()
    existing_flat = flatten_existing_blocks(existing)
    matches = match_blocks(existing_flat, new_blocks)
    existing_by_uid = {eb.uid: eb for eb in existing_flat}
    new_uids = {b.uid for b in new_blocks}
    kept_uids = set(matches.values())

    def desired_parent_uid(block: Block) -> str:
        ref = block.parent_uid
        if ref is None or ref == parent_uid:
            return parent_uid
        if ref in matches:
            return matches[ref]
        # The parent is created in this same pass, under its temporary uid.
        if ref in new_uids or ref in kept_uids:
            return ref
        if ref in existing_by_uid:
            raise UnresolvedParentError(
                f"Block {block.uid} ({block.text[:40]!r}) references existing block {ref}, "
                "which is not kept and would be deleted"
            )
        raise UnresolvedParentError(
            f"Block {block.uid} ({block.text[:40]!r}) references unknown parent {ref}; "
            f"expected {parent_uid} or a block in this diff"
        )

    desired_parent: dict[str, str] = {}
    desired_order: dict[str, int] = {}
    sibling_counts: dict[str, int] = {}
    for block in new_blocks:
        d_parent = desired_parent_uid(block)
        desired_parent[block.uid] = d_parent
        desired_order[block.uid] = sibling_counts.get(d_parent, 0)
        sibling_counts[d_parent] = desired_order[block.uid] + 1

    for block in new_blocks:
        d_parent = desired_parent[block.uid]
        order = desired_order[block.uid]
        exist_uid = matches.get(block.uid)

        if exist_uid is None:
            result.creates.append(create_block(
                block.text,
                d_parent,
                uid=block.uid,
                order=order,
                open=block.open,
                heading=block.heading,
                children_view_type=block.children_view_type,
            ))
            continue

        eb = existing_by_uid[exist_uid]
        result.preserved_uids.add(exist_uid)

        text = None
        if normalize_text(block.text) != normalize_text(eb.text):
            text = block.text

        heading = None
        if block.heading is not None:
            if block.heading != eb.heading:
                heading = block.heading
        elif eb.heading is not None:
            heading = 0
            msg = (
                f"Block {exist_uid}: staged heading removal (heading 0); "
                "Roam may keep the existing heading"
            )
            logger.warning(msg)
            result.warnings.append(msg)

        if text is not None or heading is not None:
            result.updates.append(update_block(exist_uid, text=text, heading=heading))

        current_parent = eb.parent_uid or parent_uid
        if current_parent != d_parent or eb.order != order:
            result.moves.append(move_block(exist_uid, d_parent, order))

    for eb in existing_flat:
        if eb.uid not in result.preserved_uids:
            result.deletes.append(remove_block(eb.uid))

    logger.debug(f"Diff under {parent_uid}: {result.stats()}")
    return result


#
# Actions
#

def generate_batch_actions(diff: DiffResult) -> list[dict]:
    """
    Order a diff for execution: creates, moves, updates, then deletes.

    Creates are already parents-first. Deletes are discovered parents-first,
    so they are reversed: Roam rejects deleting a block that still has children.
    """
    return [
        *diff.creates,
        *diff.moves,
        *diff.updates,
        *reversed(diff.deletes),
    ]


def filter_actions(actions: list[dict], types: Iterable[str]) -> list[dict]:
    wanted = set(types)
    return [a for a in actions if a.get("action") in wanted]


def group_actions_by_type(actions: list[dict]) -> dict[str, list[dict]]:
    groups: dict[str, list[dict]] = {"creates": [], "updates": [], "moves": [], "deletes": []}
    keys = dict(zip(ACTION_TYPES, ("creates", "updates", "moves", "deletes")))
    for action in actions:
        key = keys.get(action.get("action", ""))
        if key:
            groups[key].append(action)
    return groups


def summarize_actions(actions: list[dict]) -> str:
    groups = group_actions_by_type(actions)
    parts = [
        f"{len(groups[key])} {key[:-1]}(s)"
        for key in ("creates", "moves", "updates", "deletes")
        if groups[key]
    ]
    return ", ".join(parts) if parts else "No changes"
