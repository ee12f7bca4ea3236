"""
Review submission and moderation.

A review is created pending and becomes approved exactly once. Approval is
the only operation that touches a product's rating aggregate, and it does so
through the data service's approval transaction.
"""
import logging
from typing import Dict, Optional, Tuple

from results import ErrorKind, Err, Result

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 1000


def fold_rating(rating_avg: Optional[float], rating_count: int, rating: int) -> Tuple[float, int]:
    """Fold one more rating into a running (average, count) pair."""
    rating_count = rating_count or 0
    rating_avg = rating_avg or 0.0
    new_count = rating_count + 1
    new_avg = (rating_avg * rating_count + rating) / new_count
    return new_avg, new_count


def validate_comment(comment: str) -> Optional[str]:
    if not (comment or "").strip():
        return "Review comment is required"
    if len(comment) > MAX_COMMENT_LENGTH:
        return f"Review comment must be at most {MAX_COMMENT_LENGTH} characters"
    return None


def validate_review(rating, comment: str) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        errors["rating"] = "Rating must be a whole number from 1 to 5"
    comment_error = validate_comment(comment)
    if comment_error:
        errors["comment"] = comment_error
    return errors


def submit_review(data_service, product_id: str, user_id: str, user_name: str,
                  rating: int, comment: str) -> Result:
    """Create a pending review for an existing product."""
    errors = validate_review(rating, comment)
    if errors:
        return Err(ErrorKind.VALIDATION, "Please correct the highlighted fields", {"errors": errors})

    product = data_service.get_product_by_id(product_id)
    if not product.success:
        return product

    return data_service.add_review({
        "product_id": product_id,
        "user_id": user_id,
        "user_name": user_name,
        "rating": rating,
        "comment": comment.strip(),
    })


def approve_review(data_service, review_id: str) -> Result:
    result = data_service.run_rating_approval_transaction(review_id)
    if result.success:
        logger.info("Review %s approved", review_id)
    else:
        logger.warning("Review %s not approved: %s", review_id, result.message)
    return result


def update_review_content(data_service, review_id: str, comment: str) -> Result:
    comment_error = validate_comment(comment)
    if comment_error:
        return Err(ErrorKind.VALIDATION, comment_error, {"errors": {"comment": comment_error}})
    return data_service.update_review_content(review_id, comment.strip())


def delete_review(data_service, review_id: str) -> Result:
    return data_service.delete_review(review_id)
