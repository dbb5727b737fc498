"""Map labelled spreadsheet rows onto canonical customer fields."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Sequence

from npatrack.errors import ValidationError
from npatrack.services.customers.models import AMOUNT_FIELDS, text_value

LOGGER = logging.getLogger(__name__)

DEFAULT_SEQUENCE_COLUMN = "Annexure-I"
DEFAULT_HEADER_LABEL = "Sr No."

DEFAULT_COLUMN_MAPPING: Dict[str, str] = {
    "Annexure-I": "sr_no",
    "__EMPTY": "branch",
    "__EMPTY_1": "record_id",
    "__EMPTY_2": "account_number",
    "__EMPTY_3": "customer_name",
    "__EMPTY_4": "scheme_code",
    "__EMPTY_5": "product_type",
    "__EMPTY_6": "sanction_limit",
    "__EMPTY_7": "date_of_npa",
    "__EMPTY_8": "outstanding_balance",
    "__EMPTY_9": "principal_overdue",
    "__EMPTY_10": "interest_overdue",
    "__EMPTY_11": "net_balance",
    "__EMPTY_12": "provision",
    "__EMPTY_13": "anomalies",
    "__EMPTY_14": "asset_classification",
    "__EMPTY_15": "asset_tagging",
    "__EMPTY_16": "contact_no",
    "__EMPTY_17": "address",
}

# Every spelling seen in older exports, client caches, and API payloads.
LEGACY_FIELD_NAMES: Dict[str, str] = {
    "SR_NO": "sr_no",
    "srNo": "sr_no",
    "BRANCH": "branch",
    "CUST_ID": "record_id",
    "customerId": "record_id",
    "recordId": "record_id",
    "_id": "record_id",
    "ACC_NO": "account_number",
    "accountNumber": "account_number",
    "CUSTOMER_NAME": "customer_name",
    "customerName": "customer_name",
    "name": "customer_name",
    "SCHEME_CODE": "scheme_code",
    "schemeCode": "scheme_code",
    "PRODUCT_TYPE": "product_type",
    "productType": "product_type",
    "SANCTION_LIMIT": "sanction_limit",
    "sanctionLimit": "sanction_limit",
    "DATE_OF_NPA": "date_of_npa",
    "dateOfNPA": "date_of_npa",
    "dateOfNpa": "date_of_npa",
    "OUTSTANDING_BALANCE": "outstanding_balance",
    "outstandingBalance": "outstanding_balance",
    "PRINCIPLE_OVERDUE": "principal_overdue",
    "PRINCIPAL_OVERDUE": "principal_overdue",
    "principleOverdue": "principal_overdue",
    "principalOverdue": "principal_overdue",
    "INTEREST_OVERDUE": "interest_overdue",
    "interestOverdue": "interest_overdue",
    "NET_BALANCE": "net_balance",
    "netBalance": "net_balance",
    "PROVISION": "provision",
    "ANOMALIES": "anomalies",
    "ASSET_CLASSIFICATION": "asset_classification",
    "assetClassification": "asset_classification",
    "ASSET_TAGGING": "asset_tagging",
    "assetTagging": "asset_tagging",
    "CONTACT_NO": "contact_no",
    "contactNo": "contact_no",
    "ADDRESS": "address",
    "assignedTo": "assigned_owner_id",
    "assignedOwnerId": "assigned_owner_id",
    "isRecovered": "is_recovered",
    "recoveryDate": "recovery_date",
    "recoveredBy": "recovered_by",
}


def adapt_legacy_record(record: Mapping[str, Any]) -> Dict[str, Any]:
    """Rename known field-name variants to canonical snake_case names.

    Canonical names win over variants when both are present; unknown keys pass
    through untouched.
    """

    adapted: Dict[str, Any] = {}
    for key, value in record.items():
        canonical = LEGACY_FIELD_NAMES.get(key)
        if canonical is None:
            adapted[key] = value
        elif canonical not in record and canonical not in adapted:
            adapted[canonical] = value
    return adapted


def _is_sequence_number(value: str) -> bool:
    try:
        float(value)
    except ValueError:
        return False
    return True


def _amount(value: str, field: str, row_number: int) -> float:
    if not value:
        return 0.0
    try:
        return float(value.replace(",", ""))
    except ValueError:
        LOGGER.warning("Row %s: unparseable %s %r treated as 0", row_number, field, value)
        return 0.0


def _check_labels(rows: Sequence[Mapping[str, Any]], column_mapping: Mapping[str, str]) -> None:
    first = next((row for row in rows if any(text_value(value) for value in row.values())), None)
    if first is None:
        raise ValidationError("No data found in Excel file")
    missing = [label for label in column_mapping if label not in first]
    if missing:
        raise ValidationError(f"Missing required columns: {', '.join(missing)}")


def normalize_rows(
    rows: Sequence[Mapping[str, Any]],
    column_mapping: Mapping[str, str] = DEFAULT_COLUMN_MAPPING,
    *,
    sequence_column: str = DEFAULT_SEQUENCE_COLUMN,
    header_label: str = DEFAULT_HEADER_LABEL,
) -> List[Dict[str, Any]]:
    """Convert raw spreadsheet rows into canonical records, preserving order.

    Rows whose ``sequence_column`` is blank, non-numeric, or the repeated
    header label are dropped. Missing cells default to ``""`` (text) or
    ``0.0`` (amounts).

    Raises:
        ValidationError: If no row carries data, or the first non-empty row
            lacks any label of ``column_mapping``.
    """

    _check_labels(rows, column_mapping)

    fields = list(dict.fromkeys(column_mapping.values()))
    normalized: List[Dict[str, Any]] = []
    for index, row in enumerate(rows, start=1):
        sequence = text_value(row.get(sequence_column))
        if not sequence or sequence == header_label or not _is_sequence_number(sequence):
            LOGGER.debug("Skipping row %s with sequence value %r", index, sequence)
            continue

        record: Dict[str, Any] = {field: "" for field in fields}
        for label, field in column_mapping.items():
            value = text_value(row.get(label))
            if field in AMOUNT_FIELDS:
                record[field] = _amount(value, field, index)
            else:
                record[field] = value
        normalized.append(record)

    LOGGER.info("Normalized %s of %s spreadsheet rows", len(normalized), len(rows))
    return normalized


__all__ = [
    "DEFAULT_COLUMN_MAPPING",
    "DEFAULT_HEADER_LABEL",
    "DEFAULT_SEQUENCE_COLUMN",
    "LEGACY_FIELD_NAMES",
    "adapt_legacy_record",
    "normalize_rows",
]
