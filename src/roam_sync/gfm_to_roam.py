from dataclasses import dataclass, field
from typing import Union, Literal
import logging
import re

from .actions import create_block
from .structs import Block, BlockRef, gen_uid

logger = logging.getLogger(__name__)

FENCE = "```"

# NOTE: RoamResearch only supports heading up to level 3
_HEADING_RE = re.compile(r"^(#{1,3})\s+(.+)$")
_BULLET_RE = re.compile(r"^(\s*)[-*+]\s+")
_FENCE_LINE_RE = re.compile(r"^\s*```")

# Emphasis markers must hug their text, so list bullets (`* a`) and
# snake_case words are left alone.
_ASTERISK_ITALIC_RE = re.compile(r"(?<![*\w])\*(?![*\s])(.+?)(?<![*\s])\*(?!\*)")
_UNDERSCORE_ITALIC_RE = re.compile(r"(?<![_\w])_(?![_\s])(.+?)(?<![_\s])_(?![_\w])")
_HIGHLIGHT_RE = re.compile(r"==(.+?)==")
_INLINE_CODE_RE = re.compile(r"(`+)(.+?)\1")
_PLACEHOLDER_RE = re.compile("\x00(\\d+)\x00")

_TASK_RE = re.compile(r"^(\s*(?:[-*+]|\d+\.)\s+)\[([ xX])\](?=\s|$)", re.MULTILINE)
_BARE_TASK_RE = re.compile(r"^\[([ xX])\](?=\s|$)")
TODO_MARKER = "{{[[TODO]]}}"
DONE_MARKER = "{{[[DONE]]}}"

_TABLE_ROW_RE = re.compile(r"^\|(?:[^|]+\|)+$")
_TABLE_SEPARATOR_RE = re.compile(r"^\|(?:\s*:?-+:?\s*\|)+$")
TABLE_MARKER = "{{[[table]]}}"


@dataclass
class MarkdownNode:
    content: str
    level: int
    heading_level: int | None = None
    children_view_type: str | None = None
    children: list["MarkdownNode"] = field(default_factory=list)


#
# Inline transforms
#

def _task_marker(mark: str) -> str:
    return TODO_MARKER if mark == " " else DONE_MARKER


def normalize_task_marker(text: str) -> str:
    """
    Convert GFM task syntax into Roam TODO/DONE markers.

    Handles list items (`- [ ] a`, `1. [x] b`) as well as bare text (`[ ] a`).
    """
    text = _TASK_RE.sub(lambda m: f"{m.group(1)}{_task_marker(m.group(2))}", text)
    return _BARE_TASK_RE.sub(lambda m: _task_marker(m.group(1)), text)


def _split_cells(row: str) -> list[str]:
    return [cell.strip() for cell in row.strip()[1:-1].split("|")]


def _table_length(lines: list[str], start: int) -> int:
    """Number of lines forming a pipe table at `start`, or 0."""
    if start + 2 >= len(lines):
        return 0
    if not _TABLE_ROW_RE.match(lines[start].strip()):
        return 0
    if not _TABLE_SEPARATOR_RE.match(lines[start + 1].strip()):
        return 0
    end = start + 2
    while end < len(lines) and _TABLE_ROW_RE.match(lines[end].strip()):
        end += 1
    if end == start + 2:
        return 0
    return end - start


def _table_to_bullets(lines: list[str]) -> list[str]:
    """
    Rewrite a pipe table as Roam's nested table outline.

    Each column nests under the previous one, for the header row and for every
    data row alike.
    """
    header = lines[0]
    indent = header[:len(header) - len(header.lstrip())]
    rows = [_split_cells(line) for i, line in enumerate(lines) if i != 1]
    out = [f"{indent}{TABLE_MARKER}"]
    for row in rows:
        for col, cell in enumerate(row):
            out.append(f"{indent}{'  ' * (col + 1)}- {cell}")
    return out


def has_markdown_table(text: str) -> bool:
    lines = text.split("\n")
    return any(_table_length(lines, i) for i in range(len(lines)))


def convert_all_tables(text: str) -> str:
    lines = text.split("\n")
    out: list[str] = []
    i = 0
    while i < len(lines):
        n = _table_length(lines, i)
        if n:
            out.append("")
            out.extend(_table_to_bullets(lines[i:i + n]))
            out.append("")
            i += n
        else:
            out.append(lines[i])
            i += 1
    return "\n".join(out)


def _convert_prose(text: str) -> str:
    # Inline code spans are opaque to every transform below.
    spans: list[str] = []

    def stash(m: re.Match) -> str:
        spans.append(m.group(0))
        return f"\x00{len(spans) - 1}\x00"

    text = _INLINE_CODE_RE.sub(stash, text)
    text = _ASTERISK_ITALIC_RE.sub(r"__\1__", text)
    text = _UNDERSCORE_ITALIC_RE.sub(r"__\1__", text)
    text = _HIGHLIGHT_RE.sub(r"^^\1^^", text)
    text = normalize_task_marker(text)
    text = convert_all_tables(text)
    return _PLACEHOLDER_RE.sub(lambda m: spans[int(m.group(1))], text)


def _split_fence_lines(lines: list[str]) -> list[str]:
    """
    Move code fences that trail other text onto their own line, so that fence
    detection only ever has to look at the start of a line.
    """
    out = []
    for line in lines:
        trimmed = line.rstrip()
        idx = trimmed.find(FENCE)
        head = trimmed[:idx]
        if idx <= 0 or not head.strip():
            out.append(line)
            continue
        indent = line[:len(line) - len(line.lstrip())]
        # A bare bullet marker in front of the fence carries no content.
        if head.strip() not in ("-", "*", "+"):
            out.append(head)
        out.append(indent + trimmed[idx:])
    return out


def _convert_lines(lines: list[str]) -> list[str]:
    """Apply inline transforms to everything outside code fences."""
    out: list[str] = []
    prose: list[str] = []
    in_code = False

    def flush():
        if prose:
            out.extend(_convert_prose("\n".join(prose)).split("\n"))
            prose.clear()

    for line in lines:
        if _FENCE_LINE_RE.match(line):
            if not in_code:
                flush()
            in_code = not in_code
            out.append(line)
        elif in_code:
            out.append(line)
        else:
            prose.append(line)
    flush()
    return out


def convert_to_roam_markdown(text: str) -> str:
    """
    Rewrite GFM into the markdown dialect Roam stores: `*a*`/`_a_` become
    `__a__`, `==a==` becomes `^^a^^`, task lists become TODO/DONE markers and
    pipe tables become `{{[[table]]}}` outlines. Code fences are left alone.
    """
    return "\n".join(_convert_lines(_split_fence_lines(text.splitlines())))


#
# Structural parsing
#

def parse_markdown_heading(text: str) -> tuple[int | None, str]:
    """Return (heading level or None, content without the `#` prefix)."""
    m = _HEADING_RE.match(text.strip())
    if m:
        return len(m.group(1)), m.group(2).strip()
    return None, text.strip()


def _attach(node: MarkdownNode, stack: list, roots: list[MarkdownNode]):
    """
    Attach `node` under the last node seen one level up.

    `stack[i]` holds the most recent node at level i (or None). A node whose
    level has no parent slot filled becomes a new root.
    """
    level = node.level
    del stack[level:]
    parent = stack[level - 1] if level > 0 and len(stack) >= level else None
    if parent is None:
        roots.append(node)
    else:
        parent.children.append(node)
    while len(stack) < level:
        stack.append(None)
    stack.append(node)


def _dedent(lines: list[str]) -> list[str]:
    widths = [len(line) - len(line.lstrip()) for line in lines if line.strip()]
    base = min(widths) if widths else 0
    return [line[base:] if line.strip() else "" for line in lines]


def parse_markdown(markdown: str) -> list[MarkdownNode]:
    lines = _convert_lines(_split_fence_lines(markdown.splitlines()))

    roots: list[MarkdownNode] = []
    stack: list[MarkdownNode | None] = []
    in_code_block = False
    code_lines: list[str] = []
    code_indentation = 0
    code_parent_level = 0

    for line in lines:
        trimmed = line.rstrip()

        if _FENCE_LINE_RE.match(trimmed):
            if not in_code_block:
                in_code_block = True
                code_lines = [trimmed.lstrip()]
                code_indentation = len(line) - len(line.lstrip())
                code_parent_level = len(stack)
            else:
                in_code_block = False
                interior = _dedent(code_lines[1:])
                content = "\n".join([code_lines[0], *interior, trimmed.lstrip()])
                del stack[code_parent_level:]
                _attach(MarkdownNode(content, code_indentation // 2), stack, roots)
                code_lines = []
            continue

        if in_code_block:
            code_lines.append(line)
            continue

        if not trimmed:
            continue

        bullet = _BULLET_RE.match(trimmed)
        if bullet:
            level = len(bullet.group(1)) // 2
            raw_content = trimmed[bullet.end():]
        else:
            level = (len(trimmed) - len(trimmed.lstrip())) // 2
            raw_content = trimmed

        heading_level, content = parse_markdown_heading(raw_content)
        _attach(MarkdownNode(content, level, heading_level=heading_level), stack, roots)

    if in_code_block:
        logger.warning(f"Unclosed code fence dropped ({len(code_lines)} lines): {code_lines[0]!r}")

    return roots


#
# Desired blocks
#

def gfm_to_blocks(raw: str, pid: str, skip_h1: bool = False) -> list[Block]:
    """
    Parse markdown into a flat, depth-first list of desired blocks rooted at `pid`.

    Parents always precede their children; `order` is the index among siblings.
    With `skip_h1`, a leading top-level H1 (usually the page title) is dropped
    and its children move up to the top level.
    """
    nodes = parse_markdown(raw)
    if skip_h1 and nodes and nodes[0].heading_level == 1:
        title = nodes.pop(0)
        nodes[0:0] = title.children

    blocks: list[Block] = []

    def visit(node: MarkdownNode, parent_ref: BlockRef, order: int):
        blk = Block(
            node.content,
            parent_ref,
            order=order,
            heading=node.heading_level,
            children_view_type=node.children_view_type,
        )
        blocks.append(blk)
        for i, child in enumerate(node.children):
            visit(child, blk.ref, i)

    root = BlockRef(block_uid=pid)
    for i, node in enumerate(nodes):
        visit(node, root, i)
    return blocks


markdown_to_blocks = gfm_to_blocks


def get_block_depth(block: Block, blocks: list[Block]) -> int:
    """Depth of `block` among `blocks`; 0 for blocks whose parent is not in the list."""
    by_ref = {b.ref: b for b in blocks}
    depth = 0
    seen = {block.ref}
    current = block
    while current.parent_ref in by_ref:
        parent = by_ref[current.parent_ref]  # type: ignore[index]
        if parent.ref in seen:
            break
        seen.add(parent.ref)
        depth += 1
        current = parent
    return depth


def convert_to_roam_actions(
        nodes: list[MarkdownNode],
        parent_uid: str,
        order: Union[int, Literal["last"]] = "last",
    ) -> list[dict]:
    """Create-only actions for a parsed forest, parents before children."""
    actions = []

    def emit(node: MarkdownNode, pid: str, position):
        uid = gen_uid()
        actions.append(create_block(
            node.content,
            pid,
            uid=uid,
            order=position,
            heading=node.heading_level,
            children_view_type=node.children_view_type,
        ))
        for i, child in enumerate(node.children):
            emit(child, uid, i)

    for i, node in enumerate(nodes):
        emit(node, parent_uid, "last" if order == "last" else order + i)
    return actions

