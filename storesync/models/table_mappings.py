"""
Firestore -> Postgres table mappings.

One TableMapping per synchronized entity type, looked up by entity-type tag
(the destination table name). Adding an entity type means adding an entry
to TABLE_MAPPINGS; the mapper, bridge, backfill and reconciliation tool all
resolve their behaviour from this registry.

Keys missing from `field_map` fall back to generic camelCase -> snake_case.
Only names in `allowed_columns` become real columns; everything else is
routed into `extra_data`.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from storesync.exceptions import UnknownEntityTypeError

EXTRA_DATA_COLUMN = "extra_data"
INITIALIZED_SENTINEL_ID = "_initialized"

# bigint money/count columns; fractional numbers are rounded before they reach them
INTEGER_COLUMNS = frozenset({
    "amount", "unit_price", "original_order_amount", "partner_price", "profit", "total", "subtotal",
    "price", "points", "total_spent", "total_revenue", "total_settled_amount", "quantity",
})
INTEGER_COLUMN_SUFFIXES = ("_amount", "_price")

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def camel_to_snake(name: str) -> str:
    """orderDate -> order_date, receiptURL -> receipt_url. snake_case input is returned unchanged."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def snake_to_camel(name: str) -> str:
    """order_date -> orderDate. Leading underscores are kept."""
    stripped = name.lstrip("_")
    prefix = name[: len(name) - len(stripped)]
    head, *rest = stripped.split("_")
    return prefix + head + "".join(part[:1].upper() + part[1:] for part in rest)


@dataclass(frozen=True)
class TableMapping:
    """Static description of how one collection lands in one table."""

    entity_type: str
    collection: str
    table: str
    allowed_columns: FrozenSet[str]
    field_map: Dict[str, str] = field(default_factory=dict)
    id_column: str = "id"
    required_columns: Tuple[str, ...] = ()
    # Columns that exist in the source but must always travel in extra_data
    catch_all_columns: FrozenSet[str] = frozenset()
    # Source field holding the record date (used for reconciliation windows)
    date_field: Optional[str] = None
    status_field: Optional[str] = "status"
    partition_field: Optional[str] = None
    integer_columns: FrozenSet[str] = INTEGER_COLUMNS

    @property
    def date_column(self) -> Optional[str]:
        if self.date_field is None:
            return None
        return self.resolve_column(self.date_field)

    @property
    def partition_column(self) -> Optional[str]:
        if self.partition_field is None:
            return None
        return self.resolve_column(self.partition_field)

    @property
    def status_column(self) -> Optional[str]:
        if self.status_field is None:
            return None
        return self.resolve_column(self.status_field)

    def resolve_column(self, source_field: str) -> str:
        """Destination name for a source field: explicit mapping first, then camelCase -> snake_case."""
        if source_field in self.field_map:
            return self.field_map[source_field]
        return camel_to_snake(source_field)

    def is_integer_column(self, column: str) -> bool:
        return column in self.integer_columns or column.endswith(INTEGER_COLUMN_SUFFIXES)

    def reverse_field_map(self) -> Dict[str, str]:
        return {column: source for source, column in self.field_map.items()}


def _columns(*names: str) -> FrozenSet[str]:
    return frozenset(names) | {EXTRA_DATA_COLUMN}


def _mapping(entity_type: str, collection: str, columns: Iterable[str], **kwargs) -> TableMapping:
    return TableMapping(
        entity_type=entity_type,
        collection=collection,
        table=entity_type,
        allowed_columns=_columns(*columns),
        **kwargs,
    )


_TIMESTAMPS = {"createdAt": "created_at", "updatedAt": "updated_at"}

TABLE_MAPPINGS: Dict[str, TableMapping] = {
    "orders": _mapping(
        "orders",
        "orders",
        [
            "id", "order_number", "status", "receipt_type", "branch_id", "branch_name", "order_date",
            "orderer", "delivery_info", "pickup_info", "summary", "payment", "items", "memo",
            "transfer_info", "actual_delivery_cost", "actual_delivery_cost_cash", "delivery_cost_status",
            "delivery_cost_updated_at", "delivery_cost_updated_by", "delivery_cost_reason",
            "delivery_profit", "created_at", "updated_at", "completed_at", "completed_by",
        ],
        field_map={
            "orderNumber": "order_number",
            "receiptType": "receipt_type",
            "branchId": "branch_id",
            "branchName": "branch_name",
            "orderDate": "order_date",
            "deliveryInfo": "delivery_info",
            "pickupInfo": "pickup_info",
            "transferInfo": "transfer_info",
            "outsourceInfo": "outsource_info",
            "actualDeliveryCost": "actual_delivery_cost",
            "completedAt": "completed_at",
            "completedBy": "completed_by",
            "cancelReason": "cancel_reason",
            **_TIMESTAMPS,
        },
        catch_all_columns=frozenset({"outsource_info"}),
        date_field="orderDate",
        partition_field="branchName",
    ),
    "customers": _mapping(
        "customers",
        "customers",
        [
            "id", "name", "contact", "company_name", "address", "email", "grade", "memo", "points",
            "type", "birthday", "wedding_anniversary", "founding_anniversary", "first_visit_date",
            "other_anniversary_name", "other_anniversary", "special_notes", "monthly_payment_day",
            "total_spent", "order_count", "primary_branch", "branch", "branches", "is_deleted",
            "created_at", "updated_at", "last_order_date",
        ],
        field_map={
            "companyName": "company_name",
            "weddingAnniversary": "wedding_anniversary",
            "foundingAnniversary": "founding_anniversary",
            "firstVisitDate": "first_visit_date",
            "otherAnniversaryName": "other_anniversary_name",
            "otherAnniversary": "other_anniversary",
            "specialNotes": "special_notes",
            "monthlyPaymentDay": "monthly_payment_day",
            "totalSpent": "total_spent",
            "orderCount": "order_count",
            "primaryBranch": "primary_branch",
            "isDeleted": "is_deleted",
            "lastOrderDate": "last_order_date",
            **_TIMESTAMPS,
        },
        status_field=None,
        partition_field="branch",
    ),
    "products": _mapping(
        "products",
        "products",
        [
            "id", "name", "main_category", "mid_category", "price", "supplier", "stock", "size",
            "color", "branch", "code", "category", "status", "created_at", "updated_at",
        ],
        field_map={"mainCategory": "main_category", "midCategory": "mid_category", **_TIMESTAMPS},
        required_columns=("name",),
        partition_field="branch",
    ),
    "materials": _mapping(
        "materials",
        "materials",
        [
            "id", "name", "main_category", "mid_category", "unit", "spec", "price", "stock", "size",
            "color", "memo", "branch", "supplier", "created_at", "updated_at",
        ],
        field_map={"mainCategory": "main_category", "midCategory": "mid_category", **_TIMESTAMPS},
        required_columns=("name",),
        status_field=None,
        partition_field="branch",
    ),
    "branches": _mapping(
        "branches",
        "branches",
        [
            "id", "name", "type", "address", "phone", "manager", "business_number", "employee_count",
            "delivery_fees", "surcharges", "account", "created_at",
        ],
        field_map={
            "businessNumber": "business_number",
            "employeeCount": "employee_count",
            "deliveryFees": "delivery_fees",
            "createdAt": "created_at",
        },
        required_columns=("name",),
        status_field=None,
    ),
    "simple_expenses": _mapping(
        "simple_expenses",
        "simpleExpenses",
        [
            "id", "expense_date", "amount", "category", "sub_category", "description", "supplier",
            "quantity", "unit_price", "branch_id", "branch_name", "receipt_url", "receipt_file_name",
            "related_request_id", "is_auto_generated", "inventory_updates", "created_at", "updated_at",
        ],
        field_map={
            "date": "expense_date",
            "expenseDate": "expense_date",
            "subCategory": "sub_category",
            "unitPrice": "unit_price",
            "branchId": "branch_id",
            "branchName": "branch_name",
            "receiptUrl": "receipt_url",
            "receiptFileName": "receipt_file_name",
            "relatedRequestId": "related_request_id",
            "isAutoGenerated": "is_auto_generated",
            "inventoryUpdates": "inventory_updates",
            **_TIMESTAMPS,
        },
        date_field="date",
        status_field=None,
        partition_field="branchName",
    ),
    "expense_requests": _mapping(
        "expense_requests",
        "expenseRequests",
        [
            "id", "request_number", "status", "branch_id", "branch_name", "total_amount",
            "total_tax_amount", "items", "approval_records", "required_approval_level",
            "current_approval_level", "fiscal_year", "fiscal_month", "created_at", "updated_at",
            "submitted_at", "approved_at", "paid_at", "payment_method", "payment_date", "payment_reference",
        ],
        field_map={
            "requestNumber": "request_number",
            "branchId": "branch_id",
            "branchName": "branch_name",
            "totalAmount": "total_amount",
            "totalTaxAmount": "total_tax_amount",
            "approvalRecords": "approval_records",
            "requiredApprovalLevel": "required_approval_level",
            "currentApprovalLevel": "current_approval_level",
            "fiscalYear": "fiscal_year",
            "fiscalMonth": "fiscal_month",
            "submittedAt": "submitted_at",
            "approvedAt": "approved_at",
            "paidAt": "paid_at",
            "paymentMethod": "payment_method",
            "paymentDate": "payment_date",
            "paymentReference": "payment_reference",
            **_TIMESTAMPS,
        },
        date_field="createdAt",
        partition_field="branchName",
    ),
    "user_roles": _mapping(
        "user_roles",
        "userRoles",
        [
            "id", "user_id", "email", "role", "permissions", "branch_id", "branch_name", "is_active",
            "created_at", "updated_at",
        ],
        field_map={
            "userId": "user_id",
            "branchId": "branch_id",
            "branchName": "branch_name",
            "isActive": "is_active",
            **_TIMESTAMPS,
        },
        status_field=None,
    ),
    "order_transfers": _mapping(
        "order_transfers",
        "orderTransfers",
        [
            "id", "original_order_id", "order_branch_id", "order_branch_name", "process_branch_id",
            "process_branch_name", "transfer_date", "transfer_reason", "transfer_by", "transfer_by_user",
            "status", "amount_split", "original_order_amount", "notes", "accepted_at", "accepted_by",
            "rejected_at", "rejected_by", "completed_at", "completed_by", "cancelled_at", "cancelled_by",
            "created_at", "updated_at",
        ],
        field_map={
            "originalOrderId": "original_order_id",
            "orderBranchId": "order_branch_id",
            "orderBranchName": "order_branch_name",
            "processBranchId": "process_branch_id",
            "processBranchName": "process_branch_name",
            "transferDate": "transfer_date",
            "transferReason": "transfer_reason",
            "transferBy": "transfer_by",
            "transferByUser": "transfer_by_user",
            "amountSplit": "amount_split",
            "originalOrderAmount": "original_order_amount",
            "acceptedAt": "accepted_at",
            "acceptedBy": "accepted_by",
            "rejectedAt": "rejected_at",
            "rejectedBy": "rejected_by",
            "completedAt": "completed_at",
            "completedBy": "completed_by",
            "cancelledAt": "cancelled_at",
            "cancelledBy": "cancelled_by",
            **_TIMESTAMPS,
        },
        date_field="transferDate",
        partition_field="orderBranchName",
    ),
    "material_requests": _mapping(
        "material_requests",
        "materialRequests",
        [
            "id", "request_number", "branch_id", "branch_name", "requester_id", "requester_name",
            "status", "total_amount", "items", "actual_purchase", "delivery", "created_at", "updated_at",
        ],
        field_map={
            "requestNumber": "request_number",
            "branchId": "branch_id",
            "branchName": "branch_name",
            "requesterId": "requester_id",
            "requesterName": "requester_name",
            "totalAmount": "total_amount",
            "actualPurchase": "actual_purchase",
            **_TIMESTAMPS,
        },
        date_field="createdAt",
        partition_field="branchName",
    ),
    "daily_stats": _mapping(
        "daily_stats",
        "dailyStats",
        ["date", "total_order_count", "total_revenue", "total_settled_amount", "branches", "last_updated"],
        field_map={
            "totalOrderCount": "total_order_count",
            "totalRevenue": "total_revenue",
            "totalSettledAmount": "total_settled_amount",
            "lastUpdated": "last_updated",
        },
        id_column="date",
        status_field=None,
    ),
    "checklists": _mapping(
        "checklists",
        "checklists",
        [
            "id", "template_id", "branch_id", "branch_name", "record_date", "week", "month", "category",
            "open_worker", "close_worker", "responsible_person", "items", "completed_by", "completed_at",
            "status", "notes", "weather", "special_events", "created_at",
        ],
        field_map={
            "templateId": "template_id",
            "branchId": "branch_id",
            "branchName": "branch_name",
            "date": "record_date",
            "openWorker": "open_worker",
            "closeWorker": "close_worker",
            "responsiblePerson": "responsible_person",
            "completedBy": "completed_by",
            "completedAt": "completed_at",
            "specialEvents": "special_events",
            "createdAt": "created_at",
        },
        date_field="date",
        partition_field="branchName",
    ),
    "stock_history": _mapping(
        "stock_history",
        "stockHistory",
        [
            "id", "date", "type", "item_type", "item_name", "quantity", "from_stock", "to_stock",
            "resulting_stock", "branch", "operator", "supplier", "price", "total_amount",
        ],
        field_map={
            "itemType": "item_type",
            "itemName": "item_name",
            "fromStock": "from_stock",
            "toStock": "to_stock",
            "resultingStock": "resulting_stock",
            "totalAmount": "total_amount",
        },
        date_field="date",
        status_field=None,
        partition_field="branch",
    ),
    "notifications": _mapping(
        "notifications",
        "notifications",
        [
            "id", "type", "sub_type", "title", "message", "severity", "user_id", "user_role", "branch_id",
            "department_id", "related_id", "related_type", "action_url", "is_read", "read_at",
            "is_archived", "auto_expire", "expires_at", "created_at", "updated_at",
        ],
        field_map={
            "subType": "sub_type",
            "userId": "user_id",
            "userRole": "user_role",
            "branchId": "branch_id",
            "departmentId": "department_id",
            "relatedId": "related_id",
            "relatedType": "related_type",
            "actionUrl": "action_url",
            "isRead": "is_read",
            "readAt": "read_at",
            "isArchived": "is_archived",
            "autoExpire": "auto_expire",
            "expiresAt": "expires_at",
            **_TIMESTAMPS,
        },
        date_field="createdAt",
        status_field=None,
    ),
    "albums": _mapping(
        "albums",
        "albums",
        [
            "id", "title", "description", "category", "photo_count", "is_public", "thumbnail_url",
            "branch_id", "created_by", "created_at", "updated_at",
        ],
        field_map={
            "photoCount": "photo_count",
            "isPublic": "is_public",
            "thumbnailUrl": "thumbnail_url",
            "branchId": "branch_id",
            "createdBy": "created_by",
            **_TIMESTAMPS,
        },
        status_field=None,
    ),
    "audit_logs": _mapping(
        "audit_logs",
        "audit_logs",
        [
            "id", "created_at", "action", "entity_type", "entity_id", "entity_name", "branch_id",
            "branch_name", "operator_id", "operator_name", "details", "user_agent",
        ],
        field_map={
            "entityType": "entity_type",
            "entityId": "entity_id",
            "entityName": "entity_name",
            "branchId": "branch_id",
            "branchName": "branch_name",
            "operatorId": "operator_id",
            "operatorName": "operator_name",
            "userAgent": "user_agent",
            "createdAt": "created_at",
        },
        date_field="createdAt",
        status_field=None,
        partition_field="branchName",
    ),
}


def get_table_mapping(entity_type: str) -> TableMapping:
    """
    Look up the mapping for an entity type.

    Raises:
        UnknownEntityTypeError: if no mapping is registered
    """
    try:
        return TABLE_MAPPINGS[entity_type]
    except KeyError:
        raise UnknownEntityTypeError(f"No table mapping registered for '{entity_type}'") from None
