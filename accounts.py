"""
Customer profile and delivery address book.
"""
import logging
import re
import uuid
from typing import Dict, Optional

from orders import MIN_PHONE_DIGITS
from results import ErrorKind, Err, Result
from schemas import Address

logger = logging.getLogger(__name__)


def phone_error(phone: str) -> Optional[str]:
    if not (phone or "").strip():
        return "Phone number is required"
    if len(re.sub(r"\D", "", phone)) < MIN_PHONE_DIGITS:
        return "Please enter a valid phone number (10+ digits)"
    return None


def validate_profile(name: str, phone: str) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    if not (name or "").strip():
        errors["name"] = "Name is required"
    error = phone_error(phone)
    if error:
        errors["phone"] = error
    return errors


def validate_address(address: Address) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    if not address.full_name.strip():
        errors["full_name"] = "Full name is required"
    error = phone_error(address.phone)
    if error:
        errors["phone"] = error
    if not address.street.strip():
        errors["street"] = "Street address is required"
    if not address.city.strip():
        errors["city"] = "City is required"
    if not address.postal_code.strip():
        errors["postal_code"] = "Postal code is required"
    return errors


def update_profile(data_service, user_id: str, name: str, phone: str) -> Result:
    errors = validate_profile(name, phone)
    if errors:
        return Err(ErrorKind.VALIDATION, "Please correct the highlighted fields", {"errors": errors})
    return data_service.update_user(user_id, {"name": name.strip(), "phone": phone.strip()})


def add_address(data_service, user_id: str, address: Address) -> Result:
    """Validate and store a delivery address; returns the new address id."""
    errors = validate_address(address)
    if errors:
        return Err(ErrorKind.VALIDATION, "Please correct the highlighted fields", {"errors": errors})
    address = address.model_copy(update={"id": uuid.uuid4().hex})
    result = data_service.add_address(user_id, address)
    if result.success:
        logger.info("Added address %s for user %s", address.id, user_id)
    return result


def remove_address(data_service, user_id: str, address_id: str) -> Result:
    return data_service.remove_address(user_id, address_id)
