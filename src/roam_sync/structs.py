from dataclasses import dataclass, field
from typing import Literal, Union
import secrets

from .actions import create_block

# Roam block uids are 9 characters drawn from this alphabet.
UID_ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_"
UID_LENGTH = 9


def gen_uid() -> str:
    return "".join(secrets.choice(UID_ALPHABET) for _ in range(UID_LENGTH))


@dataclass(frozen=True)
class BlockRef:
    block_uid: str


def _new_ref() -> BlockRef:
    return BlockRef(block_uid=gen_uid())


@dataclass
class Block:
    """
    A block in the desired state, usually produced from markdown.

    The tree shape lives only in `parent_ref`; a `parent_ref` equal to the
    page (or container) uid, or None, marks a top-level block.
    """
    text: str
    parent_ref: Union[BlockRef, str, None] = None
    ref: BlockRef = field(default_factory=_new_ref)
    order: Union[int, Literal["last"]] = "last"
    open: bool = True
    heading: int | None = None
    children_view_type: str | None = None

    def __post_init__(self):
        if isinstance(self.parent_ref, str):
            self.parent_ref = BlockRef(block_uid=self.parent_ref)

    @property
    def uid(self) -> str:
        return self.ref.block_uid

    @property
    def parent_uid(self) -> str | None:
        if self.parent_ref is None:
            return None
        return self.parent_ref.block_uid  # type: ignore[union-attr]

    def to_create_action(self) -> dict:
        return create_block(
            self.text,
            self.parent_uid,
            uid=self.uid,
            order=self.order,
            open=self.open,
            heading=self.heading,
            children_view_type=self.children_view_type,
        )
