"""Customer resolution for checkout."""

import datetime as dt
import hashlib
import logging
from typing import TYPE_CHECKING, Any

from ..models.booking import Customer, CustomerCreate

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def customer_id_for_email(email: str) -> str:
    """Derive a stable customer id from the normalised email.

    Deriving the key (rather than looking it up through an index) makes the
    upsert a single conditional write, so concurrent checkouts with the same
    email resolve to the same customer.
    """
    digest = hashlib.sha256(normalize_email(email).encode("utf-8")).hexdigest()
    return f"CUST-{digest[:16].upper()}"


class CustomerService:
    """Idempotent customer upsert keyed on email."""

    TABLE = "customers"

    def __init__(self, db: "DynamoDBService") -> None:
        self.db = db

    def get_customer(self, customer_id: str) -> Customer | None:
        item = self.db.get_item(self.TABLE, {"customer_id": customer_id})
        return self._item_to_customer(item) if item else None

    def upsert_by_email(self, data: CustomerCreate) -> Customer:
        """Resolve the customer for an email, creating it on first sight.

        Existing records are returned unchanged; profile edits belong to the
        admin tooling.

        Args:
            data: Customer details from the checkout request

        Returns:
            The existing or newly created customer
        """
        customer = Customer(
            customer_id=customer_id_for_email(data.email),
            email=normalize_email(data.email),
            first_name=data.first_name.strip(),
            last_name=data.last_name.strip(),
            phone=data.phone,
            created_at=dt.datetime.now(dt.UTC),
        )

        created = self.db.put_item(
            self.TABLE,
            self._customer_to_item(customer),
            condition_expression="attribute_not_exists(customer_id)",
        )
        if created:
            logger.info("Created customer %s", customer.customer_id)
            return customer

        existing = self.db.get_item(
            self.TABLE, {"customer_id": customer.customer_id}, consistent_read=True
        )
        if existing is None:
            # Deleted between the conditional put and the read
            self.db.put_item(self.TABLE, self._customer_to_item(customer))
            return customer
        return self._item_to_customer(existing)

    def _customer_to_item(self, customer: Customer) -> dict[str, Any]:
        item: dict[str, Any] = {
            "customer_id": customer.customer_id,
            "email": customer.email,
            "first_name": customer.first_name,
            "last_name": customer.last_name,
            "created_at": customer.created_at.isoformat(),
        }
        if customer.phone:
            item["phone"] = customer.phone
        return item

    def _item_to_customer(self, item: dict[str, Any]) -> Customer:
        return Customer(
            customer_id=item["customer_id"],
            email=item["email"],
            first_name=item.get("first_name", ""),
            last_name=item.get("last_name", ""),
            phone=item.get("phone"),
            created_at=dt.datetime.fromisoformat(item["created_at"]),
        )
