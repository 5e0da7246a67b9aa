"""Append-only audit log for operator-visible actions."""

import datetime as dt
import json
import logging
import uuid
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Attr, Key

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class AuditLogService:
    """Writes and reads audit-log rows.

    ``details`` is stored as a JSON string so entries of any shape can share
    the table without float/Decimal conversion.
    """

    TABLE = "audit-log"

    def __init__(self, db: "DynamoDBService") -> None:
        self.db = db

    def append(
        self,
        action: str,
        resource_type: str,
        resource_id: str,
        actor: str = SYSTEM_ACTOR,
        details: dict[str, Any] | None = None,
    ) -> str:
        """Append an entry.

        Args:
            action: What happened (payment_reconciliation, manual_review, ...)
            resource_type: Kind of resource acted on (booking, payment, ...)
            resource_id: Id of that resource
            actor: Operator subject or "system"
            details: JSON-serialisable context

        Returns:
            The new audit id
        """
        audit_id = f"AUD-{uuid.uuid4().hex[:16].upper()}"
        self.db.put_item(
            self.TABLE,
            {
                "audit_id": audit_id,
                "action": action,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "actor": actor,
                "details": json.dumps(details or {}, default=str, sort_keys=True),
                "created_at": dt.datetime.now(dt.UTC).isoformat(),
            },
        )
        logger.info(
            "Audit entry %s: %s on %s %s by %s",
            audit_id,
            action,
            resource_type,
            resource_id,
            actor,
        )
        return audit_id

    def entries_for(self, resource_id: str) -> list[dict[str, Any]]:
        """Entries for a resource, oldest first, with ``details`` decoded."""
        items = self.db.query(
            self.TABLE,
            Key("resource_id").eq(resource_id),
            index_name="resource-index",
        )
        for item in items:
            item["details"] = json.loads(item.get("details") or "{}")
        return items

    def entries_by_action(self, action: str) -> list[dict[str, Any]]:
        """All entries with a given action (operator reporting, small volumes)."""
        items = self.db.scan(self.TABLE, filter_expression=Attr("action").eq(action))
        for item in items:
            item["details"] = json.loads(item.get("details") or "{}")
        return sorted(items, key=lambda i: i["created_at"])
