"""
SIIGO invoice → order mapping

Pure functions that turn a SIIGO invoice (basic listing entry + full detail)
and the customer record into the fields stored on orders/order_items.
No I/O here; the import and update services call these.

`customer` is the basic customer embedded in the invoice, `customer_info`
the detailed record from GET /v1/customers/{id} (may be an empty dict).

Author: Equipo Gestión de Pedidos
Date: 2025-09-03
"""
import re
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

NOT_APPLICABLE = 'No aplica'
DEFAULT_CUSTOMER_NAME = 'Cliente SIIGO'
DEFAULT_PHONE = 'Sin teléfono'
DEFAULT_ADDRESS = 'Sin dirección'
DEFAULT_COUNTRY = 'Colombia'
DEFAULT_ITEM_NAME = 'Producto SIIGO'
INITIAL_ORDER_STATUS = 'pendiente_por_facturacion'

_CONTROL_CHARS = re.compile(r'[\u0000-\u001F\u007F-\u009F]')
_SURROGATES = re.compile(r'[\uD800-\uDFFF]')
_NON_BMP = re.compile(r'[^\u0000-\uFFFF]')
_SHIPPING_PAYMENT_LABEL = re.compile(r'FORMA\s+DE\s+PAGO\s+DE\s+ENVIO\s*:', re.IGNORECASE)
_SHIPPING_PAYMENT_PREFIX = re.compile(r'.*FORMA\s+DE\s+PAGO\s+DE\s+ENVIO\s*:\s*', re.IGNORECASE)


# ============================================================================
# Sanitizing
# ============================================================================

def sanitize_text(text: Any) -> Any:
    """Remove control characters, lone surrogates and characters outside the BMP"""
    if not text or not isinstance(text, str):
        return text
    cleaned = _CONTROL_CHARS.sub('', text)
    cleaned = _SURROGATES.sub('', cleaned)
    cleaned = _NON_BMP.sub('', cleaned)
    return cleaned.strip()


def sanitize_object(obj: Any) -> Any:
    """Recursively sanitize strings (keys included) in dicts and lists"""
    if isinstance(obj, str):
        return sanitize_text(obj)
    if isinstance(obj, list):
        return [sanitize_object(item) for item in obj]
    if isinstance(obj, dict):
        return {sanitize_text(k) if isinstance(k, str) else k: sanitize_object(v) for k, v in obj.items()}
    return obj


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _get(obj: Any, *path: Any) -> Any:
    """Safe nested lookup over dicts and lists"""
    current = obj
    for key in path:
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and isinstance(key, int):
            current = current[key] if -len(current) <= key < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


# ============================================================================
# Customer fields
# ============================================================================

def _usable_commercial_name(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != '' and value != NOT_APPLICABLE


def extract_commercial_name(customer: Optional[Dict], customer_info: Dict) -> Optional[str]:
    """
    Commercial name: detailed record, then basic customer (ignoring "No aplica").
    Companies fall back to their first name element or company name; natural
    persons have none.
    """
    if _usable_commercial_name(customer_info.get('commercial_name')):
        return customer_info['commercial_name'].strip()

    if customer and _usable_commercial_name(customer.get('commercial_name')):
        return customer['commercial_name'].strip()

    if customer_info.get('person_type') == 'Company':
        names = customer_info.get('name')
        if isinstance(names, list) and names:
            return str(names[0]).strip()
        company_name = _get(customer_info, 'company', 'name')
        if company_name:
            return company_name.strip()

    return None


def extract_customer_name(customer: Optional[Dict], customer_info: Dict) -> str:
    commercial_name = customer_info.get('commercial_name')
    if commercial_name and commercial_name != NOT_APPLICABLE:
        return commercial_name

    names = customer_info.get('name')
    if isinstance(names, list) and len(names) >= 2:
        return ' '.join(str(n) for n in names).strip()

    first_name = _get(customer_info, 'person', 'first_name')
    if first_name:
        last_name = _get(customer_info, 'person', 'last_name') or ''
        return f"{first_name} {last_name}".strip()

    company_name = _get(customer_info, 'company', 'name')
    if company_name:
        return company_name

    if customer:
        if customer.get('commercial_name') and customer['commercial_name'] != NOT_APPLICABLE:
            return customer['commercial_name']
        if customer.get('name'):
            name = customer['name']
            return ' '.join(str(n) for n in name).strip() if isinstance(name, list) else name

    identification_name = _get(customer_info, 'identification', 'name') or _get(customer, 'identification', 'name')
    if identification_name:
        return identification_name

    return DEFAULT_CUSTOMER_NAME


def extract_customer_phone(customer: Optional[Dict], customer_info: Dict) -> str:
    return (
        _get(customer_info, 'phones', 0, 'number')
        or _get(customer, 'phones', 0, 'number')
        or _get(customer_info, 'person', 'phones', 0, 'number')
        or _get(customer_info, 'company', 'phones', 0, 'number')
        or DEFAULT_PHONE
    )


def extract_customer_address(customer: Optional[Dict], customer_info: Dict) -> str:
    return (
        _get(customer_info, 'address', 'address')
        or _get(customer, 'address', 'address')
        or _get(customer_info, 'person', 'address', 'address')
        or _get(customer_info, 'company', 'address', 'address')
        or DEFAULT_ADDRESS
    )


def extract_customer_identification(customer: Optional[Dict], customer_info: Dict) -> Optional[str]:
    if isinstance(customer_info.get('identification'), str):
        return customer_info['identification']
    if customer and isinstance(customer.get('identification'), str):
        return customer['identification']
    return None


def extract_customer_id_type(customer: Optional[Dict], customer_info: Dict) -> Optional[str]:
    return _get(customer_info, 'id_type', 'name') or _get(customer_info, 'id_type', 'code')


def extract_customer_email(customer: Optional[Dict], customer_info: Dict) -> Optional[str]:
    return _get(customer_info, 'contacts', 0, 'email') or customer_info.get('email') or None


def extract_customer_department(customer: Optional[Dict], customer_info: Dict) -> Optional[str]:
    return _get(customer_info, 'address', 'city', 'state_name')


def extract_customer_city(customer: Optional[Dict], customer_info: Dict) -> Optional[str]:
    city = _get(customer_info, 'address', 'city')
    if isinstance(city, dict):
        return city.get('city_name')
    if isinstance(city, str):
        return city
    return None


def extract_customer_country(customer: Optional[Dict], customer_info: Dict) -> str:
    return _get(customer_info, 'address', 'city', 'country_name') or DEFAULT_COUNTRY


def extract_customer_person_type(customer: Optional[Dict], customer_info: Dict) -> Optional[str]:
    return customer_info.get('person_type') or None


# ============================================================================
# Invoice fields
# ============================================================================

def calculate_total(invoice: Dict, full_invoice: Dict) -> float:
    """
    Invoice total: full.total, full.total_amount, basic.total,
    basic.total_amount, then the sum of quantity * unit price of the items.
    """
    for source, key in ((full_invoice, 'total'), (full_invoice, 'total_amount'),
                        (invoice, 'total'), (invoice, 'total_amount')):
        value = _to_float(source.get(key))
        if value:
            return value

    items = full_invoice.get('items')
    if isinstance(items, list):
        calculated = 0.0
        for item in items:
            quantity = _to_float(item.get('quantity')) or 1.0
            price = _to_float(item.get('unit_price')) or _to_float(item.get('price')) or 0.0
            calculated += quantity * price
        if calculated > 0:
            return calculated

    return 0.0


def extract_observations(invoice: Dict, full_invoice: Dict) -> Optional[str]:
    """Labelled observations/notes/comments joined by blank lines"""
    observations = []

    if full_invoice.get('observations'):
        observations.append(f"OBSERVACIONES: {full_invoice['observations']}")
    if full_invoice.get('notes'):
        observations.append(f"NOTAS: {full_invoice['notes']}")
    if full_invoice.get('comments'):
        observations.append(f"COMENTARIOS: {full_invoice['comments']}")

    if not observations and invoice.get('observations'):
        observations.append(f"OBSERVACIONES: {invoice['observations']}")
    if not observations and invoice.get('notes'):
        observations.append(f"NOTAS: {invoice['notes']}")

    return '\n\n'.join(observations) or None


def extract_shipping_payment_method(invoice: Dict, full_invoice: Dict) -> Optional[str]:
    """
    Read the "FORMA DE PAGO DE ENVIO:" line from the invoice texts.
    Normalized to 'contado' / 'contraentrega' when recognized.
    """
    text_sources = [
        full_invoice.get('observations'),
        full_invoice.get('notes'),
        full_invoice.get('comments'),
        invoice.get('observations'),
        invoice.get('notes'),
    ]

    for text in text_sources:
        if not text or not isinstance(text, str):
            continue

        normalized_text = text.replace('\r\n', '\n').replace('\r', '\n')
        for line in normalized_text.split('\n'):
            line = re.sub(r'[ \t\f\v]+', ' ', line).strip()
            if not _SHIPPING_PAYMENT_LABEL.search(line):
                continue

            value = _SHIPPING_PAYMENT_PREFIX.sub('', line, count=1).strip()
            if not value:
                continue

            lowered = value.lower()
            if 'contado' in lowered:
                return 'contado'
            if 'contraentrega' in lowered or 'contra entrega' in lowered:
                return 'contraentrega'
            return value

    return None


def parse_invoice_datetime(full_invoice: Dict) -> Optional[datetime]:
    """Voucher date ('date') preferred over creation timestamp ('created')"""
    raw = full_invoice.get('date') or full_invoice.get('created')
    if not raw:
        return None
    if isinstance(raw, datetime):
        return raw
    try:
        return datetime.fromisoformat(str(raw).replace('Z', '+00:00'))
    except ValueError:
        logger.warning(f"Could not parse SIIGO invoice date: {raw}")
        return None


def extract_order_items(invoice_data: Optional[Dict]) -> List[Dict[str, Any]]:
    """Order lines from invoice items"""
    if not invoice_data or not isinstance(invoice_data.get('items'), list):
        return []

    items = []
    for item in invoice_data['items']:
        items.append({
            'name': item.get('description') or item.get('name') or DEFAULT_ITEM_NAME,
            'quantity': _to_float(item.get('quantity')) or 1.0,
            'price': _to_float(item.get('price')) or _to_float(item.get('unit_price')) or 0.0,
            'description': item.get('description') or item.get('name') or None,
            'product_code': item.get('code') or None,
        })
    return items


def build_order_notes(invoice_data: Dict, customer_info: Optional[Dict] = None) -> Optional[str]:
    customer_info = customer_info or {}
    notes = []

    if invoice_data.get('observations'):
        notes.append(f"OBSERVACIONES SIIGO: {invoice_data['observations']}")
    if invoice_data.get('notes'):
        notes.append(f"NOTAS SIIGO: {invoice_data['notes']}")
    if customer_info.get('identification'):
        notes.append(f"IDENTIFICACIÓN: {customer_info['identification']}")
    id_type_name = _get(customer_info, 'id_type', 'name')
    if id_type_name:
        notes.append(f"TIPO ID: {id_type_name}")

    return '\n\n'.join(notes) or None


def build_order_data(invoice: Dict, full_invoice: Dict, customer_info: Dict,
                     payment_method: str = 'transferencia',
                     delivery_method: str = 'domicilio',
                     created_by: Optional[int] = None) -> Dict[str, Any]:
    """
    Everything needed to INSERT the order row for an invoice.
    Text fields are sanitized.
    """
    customer = full_invoice.get('customer') or invoice.get('customer') or {}
    order_number = full_invoice.get('name') or invoice.get('name') or f"SIIGO-{invoice.get('id')}"

    city = extract_customer_city(customer, customer_info)
    if isinstance(city, (dict, list)):
        city = json.dumps(city, ensure_ascii=False)

    return {
        'order_number': order_number,
        'invoice_code': order_number,
        'siigo_invoice_id': invoice.get('id'),
        'customer_name': sanitize_text(extract_customer_name(customer, customer_info)),
        'commercial_name': sanitize_text(extract_commercial_name(customer, customer_info)),
        'customer_phone': sanitize_text(extract_customer_phone(customer, customer_info)),
        'customer_address': sanitize_text(extract_customer_address(customer, customer_info)),
        'customer_identification': sanitize_text(extract_customer_identification(customer, customer_info)),
        'customer_id_type': sanitize_text(extract_customer_id_type(customer, customer_info)),
        'siigo_customer_id': customer_info.get('id') or customer.get('id'),
        'customer_person_type': extract_customer_person_type(customer, customer_info),
        'customer_email': sanitize_text(extract_customer_email(customer, customer_info)),
        'customer_department': sanitize_text(extract_customer_department(customer, customer_info)),
        'customer_country': sanitize_text(extract_customer_country(customer, customer_info)),
        'customer_city': sanitize_text(city),
        'total_amount': calculate_total(invoice, full_invoice),
        'status': INITIAL_ORDER_STATUS,
        'delivery_method': delivery_method,
        'payment_method': payment_method,
        'shipping_payment_method': extract_shipping_payment_method(invoice, full_invoice),
        'siigo_public_url': full_invoice.get('public_url') or invoice.get('public_url'),
        'siigo_observations': sanitize_text(extract_observations(invoice, full_invoice)),
        'siigo_invoice_created_at': parse_invoice_datetime(full_invoice),
        'created_by': created_by,
    }
