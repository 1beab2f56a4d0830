from __future__ import annotations

from dataclasses import dataclass, field


from roam_sync.diff import ExistingBlock, diff_block_trees, generate_batch_actions
from roam_sync.gfm_to_roam import gfm_to_blocks
from roam_sync.structs import Block, BlockRef


PAGE = "page"


def _nb(uid: str, text: str, parent_uid: str = PAGE) -> Block:
    return Block(text, parent_ref=BlockRef(block_uid=parent_uid), ref=BlockRef(block_uid=uid))


def _eb(
    uid: str,
    text: str,
    order: int,
    parent_uid: str = PAGE,
    children: list[ExistingBlock] | None = None,
) -> ExistingBlock:
    block = ExistingBlock(uid=uid, text=text, order=order, heading=None, parent_uid=parent_uid)
    if children:
        block.children = children
    return block


def _idx(actions: list[dict], action: str, uid: str) -> int:
    for i, a in enumerate(actions):
        if a.get("action") == action and a.get("block", {}).get("uid") == uid:
            return i
    raise AssertionError(f"missing action={action} uid={uid}")


@dataclass
class _Node:
    uid: str
    parent_uid: str | None
    text: str = ""
    children: list[str] = field(default_factory=list)


class _Graph:
    """
    In-memory stand-in for the block store.

    Executes batch actions strictly in order and rejects anything the real
    store would: unknown parents, duplicate uids, and deleting a block that
    still has children.
    """

    def __init__(self, existing_trees: list[ExistingBlock]):
        self.nodes: dict[str, _Node] = {PAGE: _Node(uid=PAGE, parent_uid=None)}
        for tree in existing_trees:
            self._add(tree)

    def _add(self, block: ExistingBlock):
        parent = block.parent_uid or PAGE
        self.nodes[block.uid] = _Node(uid=block.uid, parent_uid=parent, text=block.text)
        self.nodes[parent].children.append(block.uid)
        for child in block.children:
            self._add(child)

    def _place(self, uid: str, parent_uid: str, order):
        siblings = self.nodes[parent_uid].children
        if order == "last":
            siblings.append(uid)
        else:
            siblings.insert(int(order), uid)

    def apply(self, actions: list[dict]) -> "_Graph":
        for a in actions:
            uid = a["block"]["uid"]
            match a["action"]:
                case "create-block":
                    parent_uid = a["location"]["parent-uid"]
                    assert parent_uid in self.nodes, f"create references missing parent {parent_uid}"
                    assert uid not in self.nodes, f"create duplicates uid {uid}"
                    self.nodes[uid] = _Node(uid=uid, parent_uid=parent_uid, text=a["block"]["string"])
                    self._place(uid, parent_uid, a["location"]["order"])

                case "move-block":
                    parent_uid = a["location"]["parent-uid"]
                    assert uid in self.nodes, f"move references missing uid {uid}"
                    assert parent_uid in self.nodes, f"move references missing parent {parent_uid}"
                    node = self.nodes[uid]
                    self.nodes[node.parent_uid].children.remove(uid)
                    node.parent_uid = parent_uid
                    self._place(uid, parent_uid, a["location"]["order"])

                case "update-block":
                    assert uid in self.nodes, f"update references missing uid {uid}"
                    if "string" in a["block"]:
                        self.nodes[uid].text = a["block"]["string"]

                case "delete-block":
                    assert uid in self.nodes, f"delete references missing uid {uid}"
                    node = self.nodes[uid]
                    assert not node.children, f"delete of {uid} while it still has children {node.children}"
                    self.nodes[node.parent_uid].children.remove(uid)
                    del self.nodes[uid]

                case other:
                    raise AssertionError(f"unsupported action: {other}")
        return self

    def outline(self, uid: str = PAGE) -> list:
        return [(self.nodes[c].text, self.outline(c)) for c in self.nodes[uid].children]


def test_delete_ancestor_moves_grandchild_out_before_deletes():
    """Keep is nested two levels down but the new markdown keeps it at the top."""
    c = _eb("C", "Keep", 0, "B")
    b = _eb("B", "Mid", 0, "A", children=[c])
    a = _eb("A", "Top", 0, children=[b])

    diff = diff_block_trees([a], [_nb("newC", "Keep")], PAGE)
    actions = generate_batch_actions(diff)

    assert _idx(actions, "move-block", "C") < _idx(actions, "delete-block", "B")
    assert _idx(actions, "move-block", "C") < _idx(actions, "delete-block", "A")

    graph = _Graph([a]).apply(actions)
    assert graph.outline() == [("Keep", [])]
    assert graph.nodes["C"].parent_uid == PAGE


def test_delete_parent_with_multiple_kept_children():
    b = _eb("B", "Keep1", 0, "A")
    c = _eb("C", "Keep2", 1, "A")
    d = _eb("D", "Drop", 2, "A")
    a = _eb("A", "Parent", 0, children=[b, c, d])

    diff = diff_block_trees([a], [_nb("newB", "Keep1"), _nb("newC", "Keep2")], PAGE)
    actions = generate_batch_actions(diff)

    assert _idx(actions, "move-block", "B") < _idx(actions, "delete-block", "A")
    assert _idx(actions, "move-block", "C") < _idx(actions, "delete-block", "A")
    assert _idx(actions, "delete-block", "D") < _idx(actions, "delete-block", "A")
    assert _Graph([a]).apply(actions).outline() == [("Keep1", []), ("Keep2", [])]


def test_created_grandchild_targets_matched_parent_uid():
    existing_child = _eb("Q", "Child", 0, "P")
    existing_parent = _eb("P", "Parent", 0, children=[existing_child])

    new_blocks = [_nb("newP", "Parent"), _nb("newQ", "Child", "newP"), _nb("newR", "GrandChild", "newQ")]
    diff = diff_block_trees([existing_parent], new_blocks, PAGE)

    create_grand = next(a for a in diff.creates if a["block"]["uid"] == "newR")
    assert create_grand["location"]["parent-uid"] == "Q"


def test_large_reorder_only_produces_moves():
    existing = [_eb(f"U{i}", f"T{i}", i) for i in range(200)]
    new_blocks = [_nb(f"n{i}", f"T{i}") for i in reversed(range(200))]

    diff = diff_block_trees(existing, new_blocks, PAGE)
    stats = diff.stats()

    assert stats["creates"] == 0
    assert stats["deletes"] == 0
    assert stats["updates"] == 0
    assert stats["moves"] == 200
    assert sorted(a["location"]["order"] for a in diff.moves) == list(range(200))

    graph = _Graph(existing).apply(generate_batch_actions(diff))
    assert [text for text, _ in graph.outline()] == [f"T{i}" for i in reversed(range(200))]


def test_many_duplicate_texts_do_not_degenerate_to_full_recreate():
    existing = [_eb(f"U{i}", "Same", i) for i in range(50)]
    new_blocks = [_nb(f"n{i}", "Same") for i in range(45)] + [_nb(f"new{i}", f"New{i}") for i in range(5)]

    stats = diff_block_trees(existing, new_blocks, PAGE).stats()

    assert stats["creates"] == 5
    assert stats["deletes"] == 5
    assert stats["moves"] == 0
    assert stats["preserved"] == 45


def test_cross_parent_duplicate_prefers_closer_order_candidate():
    x1 = _eb("X1", "Same", 1, "PA")
    pa = _eb("PA", "ParentA", 0, children=[x1])
    x2 = _eb("X2", "Same", 100, "PB")
    pb = _eb("PB", "ParentB", 1, children=[x2])

    diff = diff_block_trees([pa, pb], [_nb("newPA", "ParentA"), _nb("newSame", "Same", "newPA")], PAGE)

    assert "X1" in diff.preserved_uids
    assert "X2" not in diff.preserved_uids


def test_restructure_executes_without_dangling_references():
    """
    A new parent is created, an existing block moves under it, and the old
    parent subtree is removed. Extra unmatched blocks keep the position
    fallback (<= 3 leftovers per side) out of play.
    """
    keep = _eb("K", "Keep", 0, "A")
    drop = _eb("D", "Drop", 1, "A")
    a = _eb("A", "OldParent", 0, children=[keep, drop])
    z1 = _eb("Z1", "Extra1", 1)
    z2 = _eb("Z2", "Extra2", 2)

    diff = diff_block_trees([a, z1, z2], [_nb("NP", "NewParent"), _nb("newK", "Keep", "NP")], PAGE)
    graph = _Graph([a, z1, z2]).apply(generate_batch_actions(diff))

    assert graph.nodes["K"].parent_uid == "NP"
    assert "A" not in graph.nodes
    assert graph.outline() == [("NewParent", [("Keep", [])])]


def test_markdown_rewrite_of_nested_page_reaches_desired_outline():
    """End to end: applying the ordered actions yields exactly the new outline."""
    s1 = _eb("S1", "Step one", 0, "H")
    s2 = _eb("S2", "Step two", 1, "H")
    h = _eb("H", "Howto", 0, children=[s1, s2])
    n1 = _eb("N1", "Note", 1)
    old1 = _eb("O1", "Obsolete 1", 2)
    old2 = _eb("O2", "Obsolete 2", 3)
    old3 = _eb("O3", "Obsolete 3", 4)
    old4 = _eb("O4", "Obsolete 4", 5)
    existing = [h, n1, old1, old2, old3, old4]

    markdown = "\n".join([
        "- Howto",
        "  - Step zero",
        "  - Step one",
        "    - Detail",
        "- Summary",
        "  - Step two",
        "- Note",
    ])
    diff = diff_block_trees(existing, gfm_to_blocks(markdown, PAGE), PAGE)
    graph = _Graph(existing).apply(generate_batch_actions(diff))

    assert graph.outline() == [
        ("Howto", [("Step zero", []), ("Step one", [("Detail", [])])]),
        ("Summary", [("Step two", [])]),
        ("Note", []),
    ]
    assert {"H", "S1", "S2", "N1"} <= diff.preserved_uids
