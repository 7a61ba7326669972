"""Built-in numbering defaults per business domain.

A key without an entry here falls back to ``{KEY}-{number:0000}``.
"""

from typing import Any

from sequencer.core.modules.sequence.models import ResetFrequency, SequenceConfig

YEARLY = ResetFrequency.YEARLY
MONTHLY = ResetFrequency.MONTHLY
DAILY = ResetFrequency.DAILY


def _yearly_document(prefix: str, description: str) -> dict[str, Any]:
    return {
        "prefix": prefix,
        "template": "{prefix}-{year}-{number:0000}",
        "reset_frequency": YEARLY,
        "description": description,
    }


def _master_record(prefix: str, width: int, description: str, start_from: int = 1) -> dict[str, Any]:
    return {
        "prefix": prefix,
        "number_length": width,
        "start_from": start_from,
        "description": description,
    }


DOMAIN_DEFAULTS: dict[str, dict[str, dict[str, Any]]] = {
    "sales": {
        "quote": _yearly_document("QT", "Quotation"),
        "sales-order": _yearly_document("SO", "Sales order"),
        "invoice": _yearly_document("INV", "Invoice"),
        "delivery-note": _yearly_document("DN", "Delivery note"),
        "credit-note": _yearly_document("CN", "Credit note"),
        "payment": _yearly_document("PAY", "Payment receipt"),
        "sales-lead": _yearly_document("LEAD", "Sales lead"),
        "sales-opportunity": _yearly_document("OPP", "Sales opportunity"),
    },
    "purchasing": {
        "purchase-order": _yearly_document("PO", "Purchase order"),
        "goods-receiving-voucher": _yearly_document("GRV", "Goods receiving voucher"),
        "purchase-return": _yearly_document("PR", "Purchase return"),
    },
    "logistics": {
        "shipment": {
            "prefix": "SHP",
            "template": "{prefix}-{year}-{number:000000}",
            "number_length": 6,
            "reset_frequency": YEARLY,
            "description": "Shipment",
        },
        "delivery-note": {
            "prefix": "DN",
            "template": "{prefix}-{year}-{number:00000}",
            "number_length": 5,
            "reset_frequency": YEARLY,
            "description": "Delivery note",
        },
        "tracking": {
            "prefix": "TRK",
            "template": "{prefix}-{year}{month}{day}-{number:0000}",
            "reset_frequency": DAILY,
            "include_check_digit": True,
            "description": "Tracking number",
        },
        "route": {
            "prefix": "RT",
            "template": "{prefix}-{year}{month}{day}-{number:0000}",
            "reset_frequency": DAILY,
            "description": "Delivery route",
        },
        "vehicle": _master_record("VEH", 4, "Vehicle"),
        "warehouse": _master_record("WH", 3, "Warehouse"),
    },
    "inventory": {
        "product": _master_record("PROD", 6, "Product"),
        "sku": _master_record("SKU", 8, "Stock keeping unit"),
        "barcode": {**_master_record("200", 10, "Internal barcode"), "separator": ""},
        "movement": {
            "prefix": "MOV",
            "template": "{prefix}{year}{month}{number}",
            "number_length": 8,
            "reset_frequency": MONTHLY,
            "description": "Stock movement",
        },
        "transfer": {
            "prefix": "TRF",
            "template": "{prefix}{year}{month}{number}",
            "number_length": 6,
            "reset_frequency": MONTHLY,
            "description": "Stock transfer",
        },
        "adjustment": {
            "prefix": "ADJ",
            "template": "{prefix}{year}{month}{number}",
            "number_length": 6,
            "reset_frequency": MONTHLY,
            "description": "Stock adjustment",
        },
        "count": {
            "prefix": "CNT",
            "template": "{prefix}{year}{month}{number}",
            "number_length": 6,
            "reset_frequency": MONTHLY,
            "description": "Stock count",
        },
        "serial": _master_record("SN", 10, "Serial number"),
        "batch": {
            "prefix": "BTH",
            "template": "{prefix}{year}{month}{day}{number}",
            "number_length": 8,
            "reset_frequency": DAILY,
            "description": "Production batch",
        },
    },
    "financial": {
        "invoice": _master_record("INV", 8, "Invoice"),
        "bill": _master_record("BIL", 8, "Supplier bill"),
        "journal": _master_record("JRNL", 8, "Journal entry"),
        "payment": _master_record("PMT", 8, "Payment"),
    },
    "customers": {
        "individual": _yearly_document("IND", "Individual customer"),
        "company": _yearly_document("COM", "Company customer"),
        "category": _master_record("CAT", 3, "Customer category", start_from=101),
        "tag": _master_record("TAG", 3, "Customer tag", start_from=101),
        "communication": _yearly_document("COMM", "Customer communication"),
        "document": _yearly_document("DOC", "Customer document"),
        "segment": _master_record("SEG", 3, "Customer segment", start_from=101),
        "ticket": _yearly_document("TKT", "Support ticket"),
    },
}


def default_config(domain: str, key: str) -> SequenceConfig:
    """Default config for a key, or the generic ``{KEY}-{number:0000}`` fallback."""
    defaults = DOMAIN_DEFAULTS.get(domain, {}).get(key)
    if defaults is None:
        defaults = {"prefix": key.upper(), "template": "{prefix}-{number:0000}"}
    return SequenceConfig(key=key, **defaults)


def default_keys(domain: str) -> list[str]:
    return list(DOMAIN_DEFAULTS.get(domain, {}))
