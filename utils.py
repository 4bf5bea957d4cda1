from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId

from errors import ValidationError


def parse_obj_id(id_str: Any) -> Optional[ObjectId]:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        return None


def to_obj_id(id_str: Any) -> ObjectId:
    obj_id = parse_obj_id(id_str)
    if obj_id is None:
        raise ValidationError("Invalid id")
    return obj_id


def sanitize(doc: Dict) -> Dict:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def public_user(doc: Dict) -> Dict:
    """User document as it may leave the service: no password hash."""
    user = sanitize(doc)
    user.pop("password_hash", None)
    return user
