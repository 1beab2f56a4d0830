from typing import cast


def _sorted_children(block: dict) -> list[dict]:
    children = block.get(':block/children') or []
    return sorted(children, key=lambda k: cast(dict, k).get(':block/order') or 0)


def format_block_as_markdown(blocks: list[dict], indent: int = 0) -> str:
    """
    Render pulled Roam blocks as nested markdown bullets.

    Two spaces per level, `#` prefixes for headings. Continuation lines of a
    multi-line block (e.g. a code block) are indented under their bullet.

    Only single-line and fenced-code blocks parse back into the same tree; the
    continuation lines of other multi-line blocks come back as child blocks.
    """
    lines = []
    pad = "  " * indent
    for block in sorted(blocks, key=lambda k: k.get(':block/order') or 0):
        text = block.get(':block/string') or ''
        heading = block.get(':block/heading') or 0
        first, *rest = text.split("\n")
        if heading:
            first = f"{'#' * heading} {first}"
        lines.append(f"{pad}- {first}")
        lines.extend(f"{pad}  {line}" if line else "" for line in rest)
        children = _sorted_children(block)
        if children:
            lines.append(format_block_as_markdown(children, indent + 1))
    return "\n".join(lines)
