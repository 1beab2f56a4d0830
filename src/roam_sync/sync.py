"""
One synchronization pass: fetch the stored blocks, diff them against fresh
markdown, and submit the resulting batch actions in order.
"""
from dataclasses import dataclass, field
from pathlib import Path
import asyncio
import json
import logging
import re
import uuid

import pendulum

from .actions import update_block
from .config import get_env_or_config
from .diff import (
    DiffResult,
    diff_block_trees,
    generate_batch_actions,
    group_actions_by_type,
    parse_existing_blocks,
)
from .gfm_to_roam import gfm_to_blocks, normalize_task_marker
from .verify import diff_page_against_markdown

logger = logging.getLogger(__name__)

# Heuristic: when updating a single block, treat large/multiline content as
# markdown that should be expanded into children blocks.
BLOCK_UPDATE_MARKDOWN_NEWLINE_THRESHOLD = 5

DEFAULT_BATCH_SIZE = 100
DEFAULT_MAX_RETRIES = 3

_MD_HEADING_RE = re.compile(r"^(#{1,6})(?:\s+(.*))?\s*$")


class PageNotFoundError(LookupError):
    pass


class BlockNotFoundError(LookupError):
    pass


class SubmitError(RuntimeError):
    """A batch kept failing; actions in earlier batches may already be applied."""

    def __init__(self, message: str, batch_num: int, processed: int):
        super().__init__(message)
        self.batch_num = batch_num
        self.processed = processed


@dataclass
class SyncResult:
    target_uid: str
    diff: DiffResult
    actions: list[dict]
    dry_run: bool = False
    submitted: int = 0
    warnings: list[str] = field(default_factory=list)

    def stats(self) -> dict[str, int]:
        counts = {key: len(actions) for key, actions in group_actions_by_type(self.actions).items()}
        counts["preserved"] = len(self.diff.preserved_uids)
        return counts

    def summary(self) -> str:
        stats = self.stats()
        if not self.actions and not self.dry_run:
            lines = ["No changes needed"]
        else:
            prefix = "Dry run - would make" if self.dry_run else "Updated"
            lines = [
                f"{prefix}: {stats['creates']} creates, {stats['updates']} updates, "
                f"{stats['moves']} moves, {stats['deletes']} deletes"
            ]
            if stats["preserved"]:
                verb = "Would preserve" if self.dry_run else "Preserved"
                lines.append(f"{verb} {stats['preserved']} block UID(s)")
        lines.extend(f"Warning: {w}" for w in self.warnings)
        return "\n".join(lines)


#
# Event log
#

def _sync_log_path(sync_id: str) -> Path | None:
    storage_dir = get_env_or_config("ROAM_STORAGE_DIR", "storage.dir")
    if not storage_dir:
        return None
    directory = Path(str(storage_dir)) / "sync_logs"
    directory.mkdir(parents=True, exist_ok=True)
    dt = pendulum.now().format("YYYYMMDD")
    return directory / f"{dt}_sync_{sync_id}.jsonl"


def _append_sync_event(sync_id: str, event: str, payload: dict):
    """Append a structured event record to the per-sync JSONL log, if enabled."""
    path = _sync_log_path(sync_id)
    if not path:
        return
    record = {
        "ts": pendulum.now().to_iso8601_string(),
        "sync_id": sync_id,
        "event": event,
        "payload": payload,
    }
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(record, ensure_ascii=False) + "\n")


#
# Submission
#

async def submit_actions(
        client,
        actions: list[dict],
        batch_size: int | None = None,
        max_retries: int | None = None,
        sync_id: str | None = None,
    ) -> int:
    """
    Submit `actions` in order, in batches, retrying each batch with exponential backoff.

    Returns the number of submitted actions. Raises SubmitError once a batch
    has exhausted its retries.
    """
    if batch_size is None:
        batch_size = int(get_env_or_config("BATCH_SIZE", "batch.size", DEFAULT_BATCH_SIZE))
    if max_retries is None:
        max_retries = int(get_env_or_config("MAX_RETRIES", "batch.max_retries", DEFAULT_MAX_RETRIES))
    if batch_size < 1:
        raise ValueError(f"batch size must be positive, got {batch_size}")
    sync_id = sync_id or uuid.uuid4().hex

    total = len(actions)
    total_batches = (total + batch_size - 1) // batch_size
    processed = 0

    for i in range(0, total, batch_size):
        batch = actions[i:i + batch_size]
        batch_num = i // batch_size + 1
        retry_count = 0

        while True:
            try:
                resp = await client.batch_actions(batch)
                processed += len(batch)
                logger.info(f"Sync {sync_id}: Batch {batch_num}/{total_batches} completed. Progress: {processed}/{total}")
                _append_sync_event(sync_id, "batch_ok", {
                    "batch_num": batch_num,
                    "total_batches": total_batches,
                    "response": resp if isinstance(resp, dict) else {"_raw": str(resp)},
                })
                break
            except Exception as e:
                retry_count += 1
                if retry_count > max_retries:
                    error_msg = f"Batch {batch_num} failed after {max_retries} retries: {e}"
                    logger.error(f"Sync {sync_id}: {error_msg}")
                    _append_sync_event(sync_id, "batch_failed", {
                        "batch_num": batch_num,
                        "error": error_msg,
                        "note": "Roam batch-actions is not transactional; earlier actions in this batch may already be applied.",
                        "actions": batch,
                    })
                    raise SubmitError(error_msg, batch_num, processed) from e
                wait_time = 2 ** retry_count
                logger.warning(f"Sync {sync_id}: Batch {batch_num} failed (attempt {retry_count}/{max_retries}), retrying in {wait_time}s: {e}")
                _append_sync_event(sync_id, "batch_retry", {
                    "batch_num": batch_num,
                    "attempt": retry_count,
                    "error": str(e),
                })
                await asyncio.sleep(wait_time)

    return processed


#
# Page sync
#

async def sync_page(
        client,
        title: str,
        markdown: str,
        dry_run: bool = False,
        verify: bool = False,
        skip_h1: bool = False,
    ) -> SyncResult:
    sync_id = uuid.uuid4().hex
    _append_sync_event(sync_id, "sync_started", {"title": title, "dry_run": dry_run, "verify": verify})
    page = await client.get_page_by_title(title)
    if not page:
        raise PageNotFoundError(f"Page not found: {title}")
    page_uid = page.get(":block/uid")
    if not page_uid:
        raise PageNotFoundError(f"Page has no UID: {title}")

    existing = parse_existing_blocks(page)
    new_blocks = gfm_to_blocks(markdown, page_uid, skip_h1=skip_h1)
    diff = diff_block_trees(existing, new_blocks, page_uid)
    actions = generate_batch_actions(diff)
    result = SyncResult(page_uid, diff, actions, dry_run=dry_run, warnings=list(diff.warnings))

    logger.info(f"Sync {sync_id}: [[{title}]] ({page_uid}): {diff.stats()}")
    _append_sync_event(sync_id, "sync_planned", {
        "title": title,
        "page_uid": page_uid,
        "dry_run": dry_run,
        "stats": diff.stats(),
    })

    if dry_run or not actions:
        return result

    result.submitted = await submit_actions(client, actions, sync_id=sync_id)

    if verify:
        refreshed = await client.get_page_by_title(title)
        if not refreshed:
            result.warnings.append(f"Verification skipped: page {title!r} not found after update")
            return result
        verify_diff = diff_page_against_markdown(refreshed, markdown, skip_h1=skip_h1)
        verify_stats = verify_diff.stats()
        _append_sync_event(sync_id, "verify_result", {"stats": verify_stats})
        if not verify_diff.is_empty():
            warn_msg = (
                "Verification diff is not empty after update: "
                f"{verify_stats['creates']} creates, {verify_stats['updates']} updates, "
                f"{verify_stats['moves']} moves, {verify_stats['deletes']} deletes"
            )
            logger.warning(f"Sync {sync_id}: {warn_msg}")
            result.warnings.append(warn_msg)

    return result


#
# Block sync
#

def _should_parse_block_update_as_markdown(text: str) -> bool:
    """
    Heuristic: treat block updates as structured markdown when the payload is
    clearly multi-line content or starts with a markdown heading.
    """
    stripped = text.strip()
    if not stripped:
        return False
    if stripped.count("\n") > BLOCK_UPDATE_MARKDOWN_NEWLINE_THRESHOLD:
        return True
    return re.match(r"^#{1,6}\s", stripped) is not None


def _split_root_and_children_markdown(markdown: str) -> tuple[str, int | None, str]:
    """
    Split markdown intended to update a single block into:
      - root block text (string)
      - root block heading (1..3) or None
      - children markdown (remaining content)
    """
    stripped = markdown.strip()
    if not stripped:
        return ("", None, "")

    lines = stripped.splitlines()
    first_line = lines[0].strip()
    rest_lines = lines[1:]

    heading_match = _MD_HEADING_RE.match(first_line)
    if heading_match:
        root_heading = min(len(heading_match.group(1)), 3)
        root_text = (heading_match.group(2) or "").strip()
    else:
        root_heading = None
        root_text = first_line

    children_markdown = "\n".join(rest_lines).strip("\n")
    return (root_text, root_heading, children_markdown)


async def sync_block(client, uid: str, markdown: str, dry_run: bool = False) -> SyncResult:
    """
    Update a single block from markdown.

    Plain text becomes one update-block. Structured markdown updates the block
    from its first line (or heading) and diffs the rest against its children.
    """
    text = markdown.strip()

    if not _should_parse_block_update_as_markdown(text):
        action = update_block(uid, text=normalize_task_marker(text))
        result = SyncResult(uid, DiffResult(updates=[action]), [action], dry_run=dry_run)
        if not dry_run:
            result.submitted = await submit_actions(client, [action])
        return result

    existing_block = await client.get_block_by_uid(uid)
    if not existing_block:
        raise BlockNotFoundError(f"Block not found: {uid}")

    root_text, root_heading, children_markdown = _split_root_and_children_markdown(text)
    root_text = normalize_task_marker(root_text)
    existing_text = existing_block.get(":block/string") or ""
    existing_heading = existing_block.get(":block/heading") or None

    warnings = []
    new_text = root_text if root_text != existing_text else None
    new_heading = None
    if root_heading is not None:
        if root_heading != existing_heading:
            new_heading = root_heading
    elif existing_heading is not None:
        new_heading = 0
        msg = f"Block {uid}: staged heading removal (heading 0); Roam may keep the existing heading"
        logger.warning(msg)
        warnings.append(msg)

    actions: list[dict] = []
    if new_text is not None or new_heading is not None:
        actions.append(update_block(uid, text=new_text, heading=new_heading))

    diff = DiffResult()
    if children_markdown.strip():
        existing_children = parse_existing_blocks(existing_block)
        new_children = gfm_to_blocks(children_markdown, uid)
        diff = diff_block_trees(existing_children, new_children, uid)
        actions.extend(generate_batch_actions(diff))
        warnings.extend(diff.warnings)

    result = SyncResult(uid, diff, actions, dry_run=dry_run, warnings=warnings)
    if dry_run or not actions:
        return result
    result.submitted = await submit_actions(client, actions)
    return result
