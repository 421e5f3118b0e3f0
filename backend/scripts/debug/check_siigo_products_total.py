#!/usr/bin/env python3
"""
Print how many products SIIGO returns, to compare against the local table

Usage:
    python3 check_siigo_products_total.py

Author: Equipo Gestión de Pedidos
Date: 2025-09-11
"""
import os
import sys
import json
import time
import logging
from collections import Counter

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../..')))

from dotenv import load_dotenv
load_dotenv()

from app.connectors.siigo_connector import SiigoConnector, SiigoAPIError

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def main():
    start = time.time()
    logger.info("🔐 Authenticating and querying SIIGO products...")

    try:
        products = SiigoConnector().get_all_products(page_size=100)
    except SiigoAPIError as e:
        logger.error(f"❌ Error querying SIIGO products: {e} {json.dumps(e.payload, default=str) if e.payload else ''}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"❌ Error querying SIIGO products: {e}")
        sys.exit(1)

    categories = Counter(
        (p.get('account_group') or {}).get('name') or p.get('category') or 'N/A'
        for p in products
    )

    print(json.dumps({
        'success': True,
        'total_products': len(products),
        'elapsed_seconds': round(time.time() - start),
        'sample_first_5': [
            {'id': p.get('id'), 'code': p.get('code'), 'name': p.get('name'), 'active': p.get('active') is not False}
            for p in products[:5]
        ],
        'categories_top': [
            {'category': name, 'count': count}
            for name, count in categories.most_common(15)
        ],
    }, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
