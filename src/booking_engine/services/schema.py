"""DynamoDB table definitions for the booking engine.

Used by deployment tooling and by the test suite (inside moto's mock_aws)
to create the tables with the keys and indexes the services query.
"""

from typing import Any


def _table(
    name: str,
    hash_key: str,
    range_key: str | None = None,
    indexes: list[tuple[str, str, str | None]] | None = None,
) -> dict[str, Any]:
    """Build a create_table definition with string keys.

    Args:
        name: Table name without prefix
        hash_key: Partition key attribute
        range_key: Optional sort key attribute
        indexes: (index_name, hash_key, range_key) tuples for GSIs
    """
    attributes = {hash_key}
    key_schema = [{"AttributeName": hash_key, "KeyType": "HASH"}]
    if range_key:
        attributes.add(range_key)
        key_schema.append({"AttributeName": range_key, "KeyType": "RANGE"})

    definition: dict[str, Any] = {
        "TableName": name,
        "KeySchema": key_schema,
        "BillingMode": "PAY_PER_REQUEST",
    }

    gsis = []
    for index_name, index_hash, index_range in indexes or []:
        attributes.add(index_hash)
        index_keys = [{"AttributeName": index_hash, "KeyType": "HASH"}]
        if index_range:
            attributes.add(index_range)
            index_keys.append({"AttributeName": index_range, "KeyType": "RANGE"})
        gsis.append(
            {
                "IndexName": index_name,
                "KeySchema": index_keys,
                "Projection": {"ProjectionType": "ALL"},
            }
        )
    if gsis:
        definition["GlobalSecondaryIndexes"] = gsis

    definition["AttributeDefinitions"] = [
        {"AttributeName": attr, "AttributeType": "S"} for attr in sorted(attributes)
    ]
    return definition


TABLE_DEFINITIONS: list[dict[str, Any]] = [
    # Booking datastore
    _table("customers", "customer_id"),
    _table("bookings", "booking_id", indexes=[("customer-index", "customer_id", None)]),
    _table(
        "reservations",
        "reservation_id",
        indexes=[
            ("resource-index", "resource_id", "start_date"),
            ("booking-index", "booking_id", None),
        ],
    ),
    _table("resource-nights", "resource_id", "night"),
    _table("addon-lines", "line_id", indexes=[("booking-index", "booking_id", None)]),
    _table("promo-applications", "application_id", indexes=[("booking-index", "booking_id", None)]),
    # Payment ledger
    _table(
        "payments",
        "payment_id",
        indexes=[
            ("booking-index", "booking_id", None),
            ("session-index", "gateway_session_id", None),
            ("transaction-index", "gateway_transaction_id", None),
        ],
    ),
    _table("stripe-webhook-events", "event_id"),
    _table("audit-log", "audit_id", indexes=[("resource-index", "resource_id", "created_at")]),
    # Catalog (maintained by admin tooling)
    _table("rooms", "room_id"),
    _table("beds", "bed_id"),
    _table("camp-sessions", "camp_session_id"),
    _table("addons", "addon_id"),
    _table("promo-codes", "code"),
    _table("calendar-events", "event_id"),
]


def create_tables(client: Any, prefix: str) -> list[str]:
    """Create every engine table with the given name prefix.

    Args:
        client: boto3 DynamoDB client
        prefix: Table name prefix (e.g. "booking-dev")

    Returns:
        Names of the created tables
    """
    created = []
    for definition in TABLE_DEFINITIONS:
        table_config = dict(definition)
        table_config["TableName"] = f"{prefix}-{definition['TableName']}"
        client.create_table(**table_config)
        created.append(table_config["TableName"])
    return created
