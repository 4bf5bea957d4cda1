"""Two-level review/reply trees built from flat review lists.

Reviews reference their parent through ``parent_id``. Roots keep their input
order and each root's ``replies`` keep input order too; nothing is sorted here.
A reply whose parent is not in the batch is dropped, not promoted to a root.
"""
from typing import Any, Dict, Iterable, List, Mapping


def _node(review: Mapping[str, Any]) -> Dict[str, Any]:
    return {**review, "replies": []}


def group_reviews(flat_reviews: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    flat_reviews = list(flat_reviews)
    by_id = {str(r["id"]): _node(r) for r in flat_reviews}

    roots: List[Dict[str, Any]] = []
    for review in flat_reviews:
        node = by_id[str(review["id"])]
        parent_id = review.get("parent_id")
        if parent_id:
            parent = by_id.get(str(parent_id))
            if parent is not None:
                parent["replies"].append(node)
        else:
            roots.append(node)
    return roots


def append_reply(tree: List[Dict[str, Any]], reply: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """Splice a freshly posted reply under its root without regrouping.

    Only valid because replies never nest: the parent is always a root.
    """
    parent_id = str(reply.get("parent_id"))
    return [
        {**root, "replies": [*root["replies"], _node(reply)]} if str(root["id"]) == parent_id else root
        for root in tree
    ]
