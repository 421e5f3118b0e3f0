#!/usr/bin/env python3
"""
Sync inventory of every SIIGO product into the local catalog

Unlike the complete product import this does not delete anything: each SIIGO
product is matched to a local product by siigo_id, then by internal_code,
and its stock/active state are copied over.

Usage:
    python3 sync_all_products_siigo.py [--dry-run]

Author: Equipo Gestión de Pedidos
Date: 2025-09-11
"""
import os
import sys
import argparse
import logging

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../..')))

from dotenv import load_dotenv
load_dotenv()

from app.connectors.siigo_connector import SiigoConnector
from app.repositories.product_repository import ProductRepository

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

PAGE_SIZE = 100
MAX_PAGES = 30


def fetch_all_products(connector: SiigoConnector):
    products = []
    for page in range(1, MAX_PAGES + 1):
        logger.info(f"   > Page {page}...")
        results = connector.get_products(page=page, page_size=PAGE_SIZE)
        if not results:
            break
        products.extend(results)
        if len(results) < PAGE_SIZE:
            break
    return products


def main():
    parser = argparse.ArgumentParser(description="Sync stock of all SIIGO products")
    parser.add_argument('--dry-run', action='store_true', help="Match products without writing")
    args = parser.parse_args()

    logger.info("=" * 60)
    logger.info("SIIGO FULL INVENTORY SYNC")
    logger.info("=" * 60)

    connector = SiigoConnector()
    repo = ProductRepository()

    try:
        connector.authenticate()
        all_products = fetch_all_products(connector)
    except Exception as e:
        logger.error(f"❌ Error downloading SIIGO catalog: {e}")
        sys.exit(1)

    logger.info(f"📋 Downloaded {len(all_products)} products from SIIGO")
    if not all_products:
        logger.warning("⚠️  SIIGO returned 0 products. Is the SIIGO environment empty?")
        sys.exit(1)

    updated = 0
    zero_stock = 0
    not_found = 0

    for siigo_product in all_products:
        stock = int(siigo_product.get('available_quantity') or 0)
        active = siigo_product.get('active') is not False

        local = repo.find_by_siigo_id(siigo_product.get('id'))
        if not local and siigo_product.get('code'):
            local = repo.find_by_internal_code(siigo_product['code'])

        if not local:
            not_found += 1
            continue

        if not args.dry_run:
            repo.apply_siigo_inventory(local.id, stock, active, siigo_product.get('id'))
        updated += 1
        if stock == 0:
            zero_stock += 1

    logger.info("-" * 60)
    logger.info("✅ Sync finished" + (" (dry run)" if args.dry_run else ""))
    logger.info(f"   Products updated: {updated}")
    logger.info(f"   Products with stock 0: {zero_stock}")
    logger.info(f"   SIIGO products without local match: {not_found}")
    logger.info("-" * 60)


if __name__ == "__main__":
    main()
