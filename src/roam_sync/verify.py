from typing import Any

from .diff import DiffResult, diff_block_trees, parse_existing_blocks
from .gfm_to_roam import gfm_to_blocks


def diff_page_against_markdown(page: dict[str, Any], markdown: str, skip_h1: bool = False) -> DiffResult:
    """
    Diff a freshly pulled page (or block) against the markdown it should hold.

    An empty result means the stored content already matches.
    """
    page_uid = page.get(":block/uid")
    if not page_uid:
        raise ValueError("Pulled page has no :block/uid")
    existing = parse_existing_blocks(page)
    desired = gfm_to_blocks(markdown, page_uid, skip_h1=skip_h1)
    return diff_block_trees(existing, desired, page_uid)
