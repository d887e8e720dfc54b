"""Load delivery codes into a product's stock pool.

The file holds one code per line; blank lines are ignored. Products with
variants need ``--variant``. The whole file is loaded in one transaction, so
a duplicate code rejects the batch.

Usage::

    python manage.py load_stock_codes <product_id> codes.txt [--variant <variant_id>]
"""

import uuid
from pathlib import Path

from django.core.management.base import BaseCommand, CommandError

from apps.catalog.services import add_stock_codes, resolve_pair
from apps.orders.errors import StorefrontError


class Command(BaseCommand):
    help = "Load stock codes (one per line) for a product or one of its variants."

    def add_arguments(self, parser):
        parser.add_argument("product_id", help="Product the codes belong to")
        parser.add_argument("path", help="Text file with one code per line")
        parser.add_argument("--variant", dest="variant_id", default=None, help="Variant id for products with variants")

    def handle(self, *args, **options):
        codes = self._read(options["path"])
        product_id = self._uuid(options["product_id"])
        variant_id = self._uuid(options["variant_id"]) if options["variant_id"] else None
        try:
            product, variant = resolve_pair(product_id, variant_id)
            loaded = add_stock_codes(product, variant, codes)
        except StorefrontError as e:
            raise CommandError(e.code)

        counter = variant if variant is not None else product
        counter.refresh_from_db(fields=["stock"])
        self.stdout.write(f"loaded={loaded} stock={counter.stock}")

    @staticmethod
    def _uuid(raw: str) -> uuid.UUID:
        try:
            return uuid.UUID(raw)
        except ValueError:
            raise CommandError(f"invalid id: {raw}")

    @staticmethod
    def _read(path: str) -> list:
        file = Path(path)
        if not file.is_file():
            raise CommandError(f"file not found: {path}")
        codes = [line.strip() for line in file.read_text(encoding="utf-8").splitlines() if line.strip()]
        if not codes:
            raise CommandError("no codes in file")
        return codes
