"""Roam batch-action builders: plain dicts, ready for the `/write` endpoint."""


def create_block(text, parent_uid, uid=None, order="last", open=True, heading=None, children_view_type=None):
    action = {
        "action": "create-block",
        "location": {
            "parent-uid": parent_uid,
            "order": order,
        },
        "block": {
            "uid": uid,
            "string": text,
            "open": open,
        },
    }
    if heading is not None:
        action["block"]["heading"] = heading
    if children_view_type is not None:
        action["block"]["children-view-type"] = children_view_type
    return action


def update_block(uid, text=None, heading=None):
    """
    Build an update-block action carrying only the fields that change.

    `heading=0` is Roam's "unset heading" value and is kept; `heading=None`
    leaves the heading untouched.
    """
    block: dict = {"uid": uid}
    if text is not None:
        block["string"] = text
    if heading is not None:
        block["heading"] = heading
    return {
        "action": "update-block",
        "block": block,
    }


def move_block(uid, parent_uid, order="last"):
    return {
        "action": "move-block",
        "block": {
            "uid": uid,
        },
        "location": {
            "parent-uid": parent_uid,
            "order": order,
        },
    }


def remove_block(uid):
    return {
        "action": "delete-block",
        "block": {
            "uid": uid,
        },
    }
