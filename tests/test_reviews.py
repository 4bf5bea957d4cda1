from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId

from errors import NotFoundError, ValidationError
from review_tree import append_reply


@pytest.fixture
def buyer_id(fake_db):
    return str(fake_db["user"].insert_one({"username": "buyer1", "role": "buyer"}).inserted_id)


@pytest.fixture
def seller_id(fake_db):
    return str(fake_db["user"].insert_one({"username": "shop1", "role": "seller"}).inserted_id)


def test_create_review_attaches_reviewer_name(review_service, product_factory, buyer_id):
    product_id = product_factory()

    review = review_service.create_review(product_id, buyer_id, 5, "  Great  ")

    assert review["comment"] == "Great"
    assert review["rating"] == 5
    assert review["parent_id"] is None
    assert review["reviewer_username"] == "buyer1"


@pytest.mark.parametrize("rating,comment", [(0, "ok"), (6, "ok"), (None, "ok"), (True, "ok"), (4, "   ")])
def test_create_review_validates(review_service, product_factory, buyer_id, rating, comment):
    with pytest.raises(ValidationError):
        review_service.create_review(product_factory(), buyer_id, rating, comment)


def test_create_review_unknown_product(review_service, buyer_id):
    with pytest.raises(NotFoundError):
        review_service.create_review(str(ObjectId()), buyer_id, 4, "fine")


def test_reply_then_splice_matches_refetch(review_service, product_factory, buyer_id, seller_id):
    product_id = product_factory(seller_id)
    root = review_service.create_review(product_id, buyer_id, 4, "Works well")
    tree = review_service.product_review_tree(product_id)

    reply = review_service.reply_to_review(product_id, root["id"], seller_id, "Thank you!")

    assert reply["parent_id"] == root["id"]
    assert reply["reviewer_username"] == "shop1"
    assert append_reply(tree, reply) == review_service.product_review_tree(product_id)


def test_second_reply_splices_where_refetch_puts_it(review_service, product_factory, buyer_id, seller_id):
    product_id = product_factory(seller_id)
    root = review_service.create_review(product_id, buyer_id, 4, "Works well")
    review_service.reply_to_review(product_id, root["id"], seller_id, "first")
    tree = review_service.product_review_tree(product_id)

    reply = review_service.reply_to_review(product_id, root["id"], seller_id, "second")

    spliced = append_reply(tree, reply)
    refetched = review_service.product_review_tree(product_id)
    assert [r["comment"] for r in spliced[0]["replies"]] == ["first", "second"]
    assert spliced == refetched


def test_review_tree_is_chronological(review_service, fake_db, product_factory, buyer_id):
    product_id = product_factory()
    base = datetime(2024, 5, 1, tzinfo=timezone.utc)
    ids = []
    for i, comment in enumerate(["oldest", "newest"]):
        ids.append(str(fake_db["review"].insert_one({
            "product_id": product_id, "reviewer_id": buyer_id, "rating": 4,
            "comment": comment, "parent_id": None, "created_at": base + timedelta(hours=i),
        }).inserted_id))

    tree = review_service.product_review_tree(product_id)

    assert [r["id"] for r in tree] == ids


def test_reply_to_reply_is_rejected(review_service, product_factory, buyer_id, seller_id):
    product_id = product_factory(seller_id)
    root = review_service.create_review(product_id, buyer_id, 4, "Works well")
    reply = review_service.reply_to_review(product_id, root["id"], seller_id, "Thanks")

    with pytest.raises(ValidationError):
        review_service.reply_to_review(product_id, reply["id"], buyer_id, "You're welcome")


def test_reply_parent_must_belong_to_product(review_service, product_factory, buyer_id, seller_id):
    root = review_service.create_review(product_factory(), buyer_id, 3, "Meh")

    with pytest.raises(NotFoundError):
        review_service.reply_to_review(product_factory(), root["id"], seller_id, "Hi")


def test_reply_requires_comment(review_service, product_factory, buyer_id, seller_id):
    product_id = product_factory()
    root = review_service.create_review(product_id, buyer_id, 3, "Meh")

    with pytest.raises(ValidationError):
        review_service.reply_to_review(product_id, root["id"], seller_id, "")


def test_product_reviews_newest_first(review_service, fake_db, product_factory, buyer_id):
    product_id = product_factory()
    base = datetime(2024, 5, 1, tzinfo=timezone.utc)
    for i, comment in enumerate(["oldest", "middle", "newest"]):
        fake_db["review"].insert_one({
            "product_id": product_id, "reviewer_id": buyer_id, "rating": 4,
            "comment": comment, "parent_id": None, "created_at": base + timedelta(hours=i),
        })

    reviews = review_service.list_product_reviews(product_id)

    assert [r["comment"] for r in reviews] == ["newest", "middle", "oldest"]


def test_seller_product_reviews_scoped_to_owner(review_service, product_factory, seller_id):
    product_id = product_factory(seller_id)

    assert review_service.list_product_reviews(product_id, seller_id=seller_id) == []
    with pytest.raises(NotFoundError):
        review_service.list_product_reviews(product_id, seller_id=str(ObjectId()))


def test_seller_reviews_span_own_products(review_service, product_factory, buyer_id, seller_id):
    mine = product_factory(seller_id, title="Kettle")
    theirs = product_factory()
    review_service.create_review(mine, buyer_id, 5, "Fast boil")
    review_service.create_review(theirs, buyer_id, 2, "Slow")

    reviews = review_service.list_seller_reviews(seller_id)

    assert [r["comment"] for r in reviews] == ["Fast boil"]
    assert reviews[0]["product_title"] == "Kettle"


def test_seller_without_products_has_no_reviews(review_service):
    assert review_service.list_seller_reviews(str(ObjectId())) == []


def test_delete_review_removes_replies(review_service, fake_db, product_factory, buyer_id, seller_id):
    product_id = product_factory(seller_id)
    root = review_service.create_review(product_id, buyer_id, 1, "Broken")
    review_service.reply_to_review(product_id, root["id"], seller_id, "Sorry, refund sent")
    other = review_service.create_review(product_id, buyer_id, 5, "Second one is fine")

    assert review_service.delete_review(root["id"]) == 2
    assert [r["id"] for r in review_service.list_all_reviews()] == [other["id"]]


def test_delete_unknown_review(review_service):
    with pytest.raises(NotFoundError):
        review_service.delete_review(str(ObjectId()))
