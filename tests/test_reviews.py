"""Tests for review submission and the rating approval transaction."""

import threading
from unittest.mock import MagicMock, patch

import pytest
from bson import ObjectId
from pymongo.errors import OperationFailure

from data_service import MongoDataService
from results import ErrorKind
from reviews import approve_review, delete_review, fold_rating, submit_review, update_review_content


@pytest.fixture
def pending_review(data_service):
    """Insert a pending review for a product and return its id."""

    def _make(product, rating=5, comment="Lovely and creamy", user_id="user-1"):
        return data_service.add_review({
            "product_id": product.id,
            "user_id": user_id,
            "user_name": f"{user_id}@example.com",
            "rating": rating,
            "comment": comment,
        }).value

    return _make


class TestFoldRating:
    def test_first_rating(self):
        assert fold_rating(None, 0, 4) == (4.0, 1)

    def test_running_mean(self):
        assert fold_rating(4.0, 3, 5) == (4.25, 4)


class TestApproveReview:
    def test_approval_updates_running_average(self, data_service, make_product, pending_review):
        product = make_product(rating_avg=4.0, rating_count=3)
        review_id = pending_review(product, rating=5)

        result = approve_review(data_service, review_id)

        assert result.success
        updated = data_service.get_product_by_id(product.id).value
        assert updated.rating_avg == pytest.approx(4.25)
        assert updated.rating_count == 4
        review = data_service.get_review_by_id(review_id).value
        assert review.approved is True
        assert review.approved_at is not None

    def test_approving_twice_is_a_noop(self, data_service, make_product, pending_review):
        product = make_product(rating_avg=4.0, rating_count=3)
        review_id = pending_review(product, rating=1)
        approve_review(data_service, review_id)
        after_first = data_service.get_product_by_id(product.id).value

        result = approve_review(data_service, review_id)

        assert result.success
        after_second = data_service.get_product_by_id(product.id).value
        assert (after_second.rating_avg, after_second.rating_count) == (after_first.rating_avg, after_first.rating_count)

    def test_missing_review(self, data_service):
        result = approve_review(data_service, "64b7f0c2a1b2c3d4e5f60718")

        assert result.kind == ErrorKind.NOT_FOUND
        assert result.message == "Review not found"

    def test_malformed_review_id(self, data_service):
        assert approve_review(data_service, "not-an-id").kind == ErrorKind.NOT_FOUND

    def test_missing_product_leaves_review_pending(self, data_service, make_product, pending_review):
        product = make_product()
        review_id = pending_review(product)
        data_service.delete_product(product.id)

        result = approve_review(data_service, review_id)

        assert result.message == "Product not found"
        assert data_service.get_review_by_id(review_id).value.approved is False

    def test_review_without_rating_is_rejected(self, data_service, mongo_db, make_product):
        product = make_product(rating_avg=4.0, rating_count=3)
        review_id = mongo_db["review"].insert_one({
            "product_id": product.id, "user_id": "user-1", "user_name": "Asha", "approved": False,
        }).inserted_id

        result = approve_review(data_service, str(review_id))

        assert result.kind == ErrorKind.VALIDATION
        unchanged = data_service.get_product_by_id(product.id).value
        assert (unchanged.rating_avg, unchanged.rating_count) == (4.0, 3)
        assert mongo_db["review"].find_one({"_id": review_id})["approved"] is False

    def test_every_read_and_write_joins_the_transaction(self):
        review_oid, product_oid = ObjectId(), ObjectId()
        db = {"review": MagicMock(), "product": MagicMock()}
        db["review"].find_one.return_value = {
            "_id": review_oid, "product_id": str(product_oid), "rating": 5, "approved": False,
        }
        db["product"].find_one.return_value = {"_id": product_oid, "rating_avg": 4.0, "rating_count": 3}
        client = MagicMock()
        session = client.start_session.return_value.__enter__.return_value
        session.with_transaction.side_effect = lambda callback: callback(session)

        result = MongoDataService(db, client).run_rating_approval_transaction(str(review_oid))

        assert result.value == {"rating_avg": 4.25, "rating_count": 4}
        for collection in db.values():
            assert [c[0] for c in collection.method_calls] == ["find_one", "update_one"]
            for c in collection.method_calls:
                assert c.kwargs["session"] is session

    def test_transaction_failure_is_reported(self, data_service, make_product, pending_review):
        product = make_product(rating_avg=3.0, rating_count=1)
        review_id = pending_review(product)

        with patch.object(
            data_service.client, "start_session",
            side_effect=OperationFailure("Transaction numbers are only allowed on a replica set member"),
        ):
            result = approve_review(data_service, review_id)

        assert result.kind == ErrorKind.REMOTE
        unchanged = data_service.get_product_by_id(product.id).value
        assert unchanged.rating_count == 1
        assert data_service.get_review_by_id(review_id).value.approved is False

    def test_concurrent_approvals_on_one_product(self, data_service, make_product, pending_review):
        product = make_product(rating_avg=3.0, rating_count=2)
        ratings = [5, 2, 4, 1, 5, 3]
        review_ids = [pending_review(product, rating=r, user_id=f"user-{i}") for i, r in enumerate(ratings)]
        barrier = threading.Barrier(len(review_ids))
        results = []

        def approve(review_id):
            barrier.wait()
            results.append(approve_review(data_service, review_id))

        threads = [threading.Thread(target=approve, args=(rid,)) for rid in review_ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(r.success for r in results)
        updated = data_service.get_product_by_id(product.id).value
        assert updated.rating_count == 2 + len(ratings)
        assert updated.rating_avg == pytest.approx((3.0 * 2 + sum(ratings)) / (2 + len(ratings)))


class TestSubmitAndModerate:
    def test_submit_creates_pending_review(self, data_service, make_product):
        product = make_product()

        result = submit_review(data_service, product.id, "user-1", "Asha", 4, "  Fresh every time  ")

        assert result.success
        review = data_service.get_review_by_id(result.value).value
        assert review.approved is False
        assert review.comment == "Fresh every time"
        assert data_service.get_product_by_id(product.id).value.rating_count == 0

    @pytest.mark.parametrize("rating,comment,field", [
        (0, "ok", "rating"),
        (6, "ok", "rating"),
        (True, "ok", "rating"),
        (3, "   ", "comment"),
        (3, "x" * 1001, "comment"),
    ])
    def test_submit_validation(self, data_service, make_product, rating, comment, field):
        product = make_product()

        result = submit_review(data_service, product.id, "user-1", "Asha", rating, comment)

        assert result.kind == ErrorKind.VALIDATION
        assert field in result.errors
        assert data_service.get_all_reviews().value == []

    def test_submit_for_unknown_product(self, data_service):
        result = submit_review(data_service, "64b7f0c2a1b2c3d4e5f60718", "user-1", "Asha", 4, "Nice")

        assert result.kind == ErrorKind.NOT_FOUND

    def test_edit_content_keeps_aggregate(self, data_service, make_product, pending_review):
        product = make_product(rating_avg=4.0, rating_count=3)
        review_id = pending_review(product, rating=5)
        approve_review(data_service, review_id)

        result = update_review_content(data_service, review_id, "Edited by moderator")

        assert result.success
        assert data_service.get_review_by_id(review_id).value.comment == "Edited by moderator"
        assert data_service.get_product_by_id(product.id).value.rating_count == 4

    def test_edit_rejects_empty_comment(self, data_service, make_product, pending_review):
        review_id = pending_review(make_product())

        assert update_review_content(data_service, review_id, "").kind == ErrorKind.VALIDATION

    def test_delete_review(self, data_service, make_product, pending_review):
        review_id = pending_review(make_product())

        assert delete_review(data_service, review_id).success
        assert delete_review(data_service, review_id).kind == ErrorKind.NOT_FOUND

    def test_product_reviews_filter_approved(self, data_service, make_product, pending_review):
        product = make_product()
        approved_id = pending_review(product, user_id="user-1")
        pending_review(product, user_id="user-2")
        approve_review(data_service, approved_id)

        approved = data_service.get_product_reviews(product.id, approved_only=True).value
        everything = data_service.get_product_reviews(product.id).value

        assert [r.id for r in approved] == [approved_id]
        assert len(everything) == 2
