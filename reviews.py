import logging
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING

from errors import NotFoundError, ValidationError
from review_tree import group_reviews
from schemas import Review as ReviewSchema
from utils import parse_obj_id, sanitize, to_obj_id

logger = logging.getLogger(__name__)


class ReviewService:
    def __init__(self, database):
        self.reviews = database["review"]
        self.products = database["product"]
        self.users = database["user"]

    def _get_product(self, product_id: str, seller_id: Optional[str] = None) -> Dict[str, Any]:
        obj_id = parse_obj_id(product_id)
        product = self.products.find_one({"_id": obj_id}) if obj_id else None
        if not product or (seller_id is not None and product.get("seller_id") != str(seller_id)):
            raise NotFoundError("Product not found")
        return product

    def _attach_names(self, reviews: List[Dict[str, Any]], with_product: bool = False) -> List[Dict[str, Any]]:
        user_ids = {parse_obj_id(r["reviewer_id"]) for r in reviews} - {None}
        user_map = {
            str(u["_id"]): u.get("username", "")
            for u in self.users.find({"_id": {"$in": list(user_ids)}})
        } if user_ids else {}

        product_map: Dict[str, str] = {}
        if with_product:
            product_ids = {parse_obj_id(r["product_id"]) for r in reviews} - {None}
            if product_ids:
                product_map = {
                    str(p["_id"]): p.get("title", "")
                    for p in self.products.find({"_id": {"$in": list(product_ids)}})
                }

        out = []
        for r in reviews:
            s = sanitize(r)
            s["reviewer_username"] = user_map.get(r["reviewer_id"])
            if with_product:
                s["product_title"] = product_map.get(r["product_id"])
            out.append(s)
        return out

    def list_product_reviews(
        self, product_id: str, seller_id: Optional[str] = None, newest_first: bool = True
    ) -> List[Dict[str, Any]]:
        """Flat review list for one product, newest first unless asked otherwise.

        With ``seller_id`` the product must belong to that seller.
        """
        product = self._get_product(product_id, seller_id)
        direction = DESCENDING if newest_first else ASCENDING
        cursor = self.reviews.find({"product_id": str(product["_id"])}).sort(
            [("created_at", direction), ("_id", direction)]
        )
        return self._attach_names(list(cursor))

    def product_review_tree(self, product_id: str) -> List[Dict[str, Any]]:
        # Oldest first, so a freshly posted reply belongs at the end of its
        # root's replies, where append_reply puts it.
        return group_reviews(self.list_product_reviews(product_id, newest_first=False))

    def create_review(self, product_id: str, reviewer_id: str, rating: Any, comment: Optional[str]) -> Dict[str, Any]:
        product = self._get_product(product_id)
        comment = (comment or "").strip()
        if not comment:
            raise ValidationError("Comment is required")
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be an integer between 1 and 5")

        doc = ReviewSchema(
            product_id=str(product["_id"]),
            reviewer_id=str(reviewer_id),
            rating=rating,
            comment=comment,
        ).model_dump()
        res = self.reviews.insert_one(doc)
        doc["_id"] = res.inserted_id
        return self._attach_names([doc])[0]

    def reply_to_review(self, product_id: str, review_id: str, replier_id: str, comment: Optional[str]) -> Dict[str, Any]:
        """Store a reply under a root review and return it, ready for ``append_reply``."""
        comment = (comment or "").strip()
        if not comment:
            raise ValidationError("Comment is required")

        product = self._get_product(product_id)
        obj_id = parse_obj_id(review_id)
        parent = self.reviews.find_one({"_id": obj_id, "product_id": str(product["_id"])}) if obj_id else None
        if not parent:
            raise NotFoundError("Review not found")
        if parent.get("parent_id"):
            raise ValidationError("Cannot reply to a reply")

        doc = ReviewSchema(
            product_id=str(product["_id"]),
            reviewer_id=str(replier_id),
            comment=comment,
            parent_id=str(parent["_id"]),
        ).model_dump()
        res = self.reviews.insert_one(doc)
        doc["_id"] = res.inserted_id
        logger.info("Reply %s posted on review %s", doc["_id"], parent["_id"])
        return self._attach_names([doc])[0]

    def list_seller_reviews(self, seller_id: str) -> List[Dict[str, Any]]:
        product_ids = [str(p["_id"]) for p in self.products.find({"seller_id": str(seller_id)})]
        if not product_ids:
            return []
        cursor = self.reviews.find({"product_id": {"$in": product_ids}}).sort([("created_at", DESCENDING)])
        return self._attach_names(list(cursor), with_product=True)

    def list_all_reviews(self) -> List[Dict[str, Any]]:
        cursor = self.reviews.find({}).sort([("created_at", DESCENDING)])
        return self._attach_names(list(cursor), with_product=True)

    def delete_review(self, review_id: str) -> int:
        """Delete a review and its direct replies; returns how many documents went."""
        obj_id = to_obj_id(review_id)
        if not self.reviews.find_one({"_id": obj_id}):
            raise NotFoundError("Review not found")
        self.reviews.delete_one({"_id": obj_id})
        removed = 1 + self.reviews.delete_many({"parent_id": str(obj_id)}).deleted_count
        logger.info("Deleted review %s (%d documents)", obj_id, removed)
        return removed
