"""Sync markdown into Roam Research while preserving block UIDs."""

__version__ = "0.1.0"

from .actions import create_block, move_block, remove_block, update_block
from .client import RoamClient
from .diff import (
    DiffResult,
    ExistingBlock,
    UnresolvedParentError,
    diff_block_trees,
    filter_actions,
    flatten_existing_blocks,
    generate_batch_actions,
    group_actions_by_type,
    parse_existing_block,
    parse_existing_blocks,
    summarize_actions,
)
from .gfm_to_roam import MarkdownNode, gfm_to_blocks, markdown_to_blocks, parse_markdown
from .matcher import match_blocks
from .structs import Block, BlockRef, gen_uid
from .sync import (
    BlockNotFoundError,
    PageNotFoundError,
    SubmitError,
    SyncResult,
    submit_actions,
    sync_block,
    sync_page,
)
from .verify import diff_page_against_markdown

__all__ = [
    "__version__",
    "Block",
    "BlockNotFoundError",
    "BlockRef",
    "DiffResult",
    "ExistingBlock",
    "MarkdownNode",
    "PageNotFoundError",
    "RoamClient",
    "SubmitError",
    "SyncResult",
    "UnresolvedParentError",
    "create_block",
    "diff_block_trees",
    "diff_page_against_markdown",
    "filter_actions",
    "flatten_existing_blocks",
    "gen_uid",
    "generate_batch_actions",
    "gfm_to_blocks",
    "group_actions_by_type",
    "markdown_to_blocks",
    "match_blocks",
    "move_block",
    "parse_existing_block",
    "parse_existing_blocks",
    "parse_markdown",
    "remove_block",
    "submit_actions",
    "summarize_actions",
    "sync_block",
    "sync_page",
    "update_block",
]
