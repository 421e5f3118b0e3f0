"""
Customer Sync Service - copies the SIIGO customer master into customers

Author: Equipo Gestión de Pedidos
Date: 2025-09-07
"""
import time
import logging
from typing import Any, Dict, List, Optional

from app.connectors.siigo_connector import SiigoConnector, get_siigo_connector
from app.repositories.customer_repository import CustomerRepository

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


def extract_phone(phones: Optional[List[Dict[str, Any]]]) -> Optional[str]:
    """indicative+number when both exist, else the first bare number"""
    if not phones:
        return None
    for phone in phones:
        if phone.get('indicative') and phone.get('number'):
            return f"{phone['indicative']}{phone['number']}"
    for phone in phones:
        if phone.get('number'):
            return phone['number']
    return None


def extract_email(contacts: Optional[List[Dict[str, Any]]]) -> Optional[str]:
    for contact in contacts or []:
        if contact.get('email'):
            return contact['email']
    return None


def map_customer(siigo_customer: Dict[str, Any]) -> Dict[str, Any]:
    addresses = siigo_customer.get('address') or []
    main_address = addresses[0] if isinstance(addresses, list) and addresses else {}
    city = main_address.get('city') or {}

    name = siigo_customer.get('name')
    if isinstance(name, list):
        name = ' '.join(str(n) for n in name if n).strip()

    return {
        'siigo_id': siigo_customer['id'],
        'document_type': 'CC' if siigo_customer.get('person_type') == 'Person' else 'NIT',
        'identification': siigo_customer.get('identification') or siigo_customer['id'],
        'check_digit': siigo_customer.get('check_digit'),
        'name': name or siigo_customer.get('commercial_name') or 'Sin nombre',
        'commercial_name': siigo_customer.get('commercial_name'),
        'phone': extract_phone(siigo_customer.get('phones')),
        'address': main_address.get('address'),
        'city': city.get('name'),
        'state': city.get('state_name'),
        'email': extract_email(siigo_customer.get('contacts')),
        'active': siigo_customer.get('active') is not False,
    }


class CustomerSyncService:
    """Pages through SIIGO customers and upserts them locally"""

    PAGE_PAUSE_SECONDS = 0.1

    def __init__(self, connector: SiigoConnector = None, customer_repository: CustomerRepository = None):
        self.connector = connector or get_siigo_connector()
        self.customers = customer_repository or CustomerRepository()

    def sync_customers_from_siigo(self) -> Dict[str, Any]:
        logger.info("Starting customer sync from SIIGO")
        page = 1
        total_synced = 0

        try:
            while True:
                try:
                    data = self.connector.get_customers_page(page=page, page_size=PAGE_SIZE)
                except Exception as e:
                    logger.error(f"Error fetching customers page {page}: {e}")
                    break

                results = (data or {}).get('results') or []
                if not results:
                    break

                for siigo_customer in results:
                    try:
                        self.customers.upsert(map_customer(siigo_customer))
                        total_synced += 1
                        if total_synced % 50 == 0:
                            logger.info(f"Synced {total_synced} customers...")
                    except Exception as e:
                        logger.error(f"Error saving customer {siigo_customer.get('id')}: {e}")

                total_pages = ((data or {}).get('pagination') or {}).get('total_pages') or 0
                if total_pages <= page:
                    break

                page += 1
                time.sleep(self.PAGE_PAUSE_SECONDS)

            logger.info(f"Customer sync finished: {total_synced} customers")
            return {'success': True, 'total_synced': total_synced}

        except Exception as e:
            logger.error(f"Error in customer sync: {e}")
            return {'success': False, 'error': str(e)}
