"""
Canonical order fields and their English / Farsi header synonyms.
"""

from __future__ import annotations

from typing import Dict, List, Tuple

from intake.extraction.data_cleaner import DataCleaner

# Priority order: earlier fields win ties during column assignment.
CANONICAL_FIELDS: Tuple[str, ...] = (
    "customer",
    "sku",
    "gtin",
    "product_name",
    "quantity",
    "unit_price",
    "line_total",
    "subtotal",
    "tax",
    "total",
)

IDENTIFIER_FIELDS: Tuple[str, ...] = ("sku", "gtin")
AMOUNT_FIELDS: Tuple[str, ...] = ("line_total", "subtotal", "tax", "total")

FIELD_SYNONYMS: Dict[str, List[str]] = {
    "sku": [
        "sku", "item code", "itemcode", "item_code", "product code", "productcode",
        "part number", "partnumber", "part no", "part#", "code", "item no", "item#",
        "item number", "article", "article number", "article no", "stock code",
        "stockcode", "material", "material number", "material code",
        "ref", "reference", "ref no", "reference number",
        "کد کالا", "کد محصول", "کد", "شماره کالا", "کد انبار", "شماره فنی",
        "کد قطعه", "کد مرجع", "شماره مرجع", "کد ماده", "شماره ماده",
    ],
    "gtin": [
        "gtin", "ean", "upc", "barcode", "bar code", "ean13", "ean-13", "ean8",
        "ean-8", "upc-a", "upca", "upc-e", "gs1", "gtin-13", "gtin-14",
        "global trade item number", "itf-14",
        "بارکد", "کد بارکد", "شماره بارکد", "کد جهانی", "بار کد",
    ],
    "product_name": [
        "description", "desc", "product description", "item description",
        "full description", "name", "product name", "productname", "item name",
        "itemname", "product", "item", "title", "product title", "goods",
        "goods description", "merchandise", "commodity", "article name",
        "details", "particulars", "specification", "spec",
        "نام", "شرح", "شرح کالا", "نام محصول", "توضیحات", "عنوان", "نام کالا",
        "مشخصات", "جزئیات", "شرح محصول", "توضیح کالا",
    ],
    "quantity": [
        "qty", "quantity", "quan", "qnty", "units", "count", "amount",
        "no of units", "number of units", "pcs", "pieces", "pc",
        "order qty", "order quantity", "ordered", "requested qty",
        "requested quantity", "required qty", "volume", "ea", "each", "nos",
        "تعداد", "مقدار", "عدد", "کمیت", "تعداد سفارش", "میزان", "مقدار سفارش",
    ],
    "unit_price": [
        "price", "unit price", "unitprice", "rate", "unit rate", "price per unit",
        "cost", "unit cost", "unit value", "selling price", "sale price",
        "sales price", "list price", "retail price", "each price", "price each",
        "price/unit", "per unit", "item price", "single price",
        "قیمت", "قیمت واحد", "نرخ", "بها", "فی", "قیمت هر واحد", "ارزش واحد",
        "قیمت فروش", "نرخ واحد",
    ],
    "line_total": [
        "total", "amount", "line total", "linetotal", "line amount", "row total",
        "extended", "extended price", "extended amount", "ext price", "ext amount",
        "net amount", "value", "item total", "line value", "total price",
        "total amount", "amt", "extended value",
        "جمع", "مبلغ", "جمع سطر", "مبلغ کل", "جمع خط", "مبلغ سطر", "قیمت کل",
        "جمع قیمت",
    ],
    "customer": [
        "customer", "client", "buyer", "purchaser", "customer name", "customername",
        "client name", "buyer name", "bill to", "billto", "sold to", "soldto",
        "ship to", "consignee", "account", "account name", "company",
        "company name", "organization", "party", "party name", "recipient",
        "مشتری", "خریدار", "نام مشتری", "طرف حساب", "گیرنده", "سفارش دهنده",
        "شرکت", "نام شرکت", "سازمان", "موسسه",
    ],
    "subtotal": [
        "subtotal", "sub total", "sub-total", "net total", "before tax", "pretax",
        "pre-tax", "taxable amount", "goods total", "items total", "base amount",
        "جمع جزء", "جمع فرعی", "مبلغ خالص", "قبل از مالیات", "جمع اقلام",
    ],
    "tax": [
        "tax", "vat", "sales tax", "gst", "tax amount", "vat amount", "tax total",
        "taxes", "duty", "levy", "excise", "hst", "pst",
        "مالیات", "عوارض", "مالیات بر ارزش افزوده", "مالیات فروش", "مبلغ مالیات",
    ],
    "total": [
        "total", "grand total", "grandtotal", "final total", "final amount",
        "invoice total", "order total", "order amount", "total due", "amount due",
        "payable", "total payable", "balance due", "gross total", "gross amount",
        "جمع کل", "مجموع کل", "مبلغ نهایی", "جمع نهایی", "مبلغ قابل پرداخت",
        "قابل پرداخت", "مبلغ فاکتور", "جمع سفارش",
    ],
}


def normalized_synonyms() -> Dict[str, List[str]]:
    """Synonym lists passed through the same normaliser used for headers."""
    out: Dict[str, List[str]] = {}
    for field, synonyms in FIELD_SYNONYMS.items():
        seen: List[str] = []
        for syn in synonyms:
            norm = DataCleaner.normalize_header(syn)
            if norm and norm not in seen:
                seen.append(norm)
        out[field] = seen
    return out


NORMALIZED_SYNONYMS: Dict[str, List[str]] = normalized_synonyms()
