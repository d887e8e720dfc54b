"""Import exported order documents.

Each document goes through ``LegacyOrderIn``, the same decode step the API
uses for legacy line shapes, so imported orders end up with typed buyer and
line references. Orders whose id already exists are skipped.

Usage::

    python manage.py import_orders orders.json [--dry-run]
"""

import json
import logging
import uuid
from pathlib import Path

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from pydantic import ValidationError as SchemaError

from apps.accounts.repository import ensure_account
from apps.catalog.services import resolve_pair
from apps.orders.domain import FulfillmentState, OrderStatus, map_provider_status
from apps.orders.errors import StorefrontError
from apps.orders.models import OrderModel
from apps.orders.repository import OrderRepository, PricedLine
from apps.orders.schemas import LegacyOrderIn

logger = logging.getLogger("orders.import")

IMPORT_ACTOR = "system:import"


class Command(BaseCommand):
    help = "Import exported orders (a JSON array, or an object with an 'orders' array)."

    def add_arguments(self, parser):
        parser.add_argument("path", help="JSON file with the exported orders")
        parser.add_argument("--dry-run", action="store_true", help="Validate without writing anything")

    def handle(self, *args, **options):
        docs = self._load(options["path"])
        repo = OrderRepository()
        imported = skipped = failed = 0

        for index, doc in enumerate(docs):
            try:
                legacy = LegacyOrderIn.model_validate(doc)
                lines = self._price(legacy)
            except (SchemaError, StorefrontError) as e:
                failed += 1
                detail = e.code if isinstance(e, StorefrontError) else f"{e.error_count()} invalid fields"
                self.stderr.write(f"document {index}: {detail}")
                continue

            if legacy.id and OrderModel.objects.filter(pk=legacy.id).exists():
                skipped += 1
                continue
            if options["dry_run"]:
                imported += 1
                continue

            self._store(repo, legacy, lines)
            imported += 1

        logger.info("orders imported", extra={"imported": imported, "skipped": skipped, "failed": failed})
        self.stdout.write(f"imported={imported} skipped={skipped} failed={failed}")

    @staticmethod
    def _load(path: str) -> list:
        file = Path(path)
        if not file.is_file():
            raise CommandError(f"file not found: {path}")
        try:
            data = json.loads(file.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise CommandError(f"invalid JSON: {e}")
        if isinstance(data, dict):
            data = data.get("orders", [])
        if not isinstance(data, list):
            raise CommandError("expected a list of orders")
        return data

    @staticmethod
    def _price(legacy: LegacyOrderIn) -> list[PricedLine]:
        priced = []
        for line in legacy.lines:
            product, variant = resolve_pair(line.product_id, line.variant_id)
            name = f"{product.name} - {variant.name}" if variant else product.name
            price = variant.price_cents if variant else product.price_cents
            priced.append(PricedLine(product.pk, variant.pk if variant else None, name, price, line.quantity))
        return priced

    @staticmethod
    @transaction.atomic
    def _store(repo: OrderRepository, legacy: LegacyOrderIn, lines: list[PricedLine]) -> None:
        try:
            status = OrderStatus(legacy.status)
        except ValueError:
            # Exports may carry the provider vocabulary ("approved", "cancelled").
            status = OrderStatus(map_provider_status(legacy.status).value)
        account = ensure_account(legacy.buyer_id)
        extra = {"metadata": {"imported": True}}
        if legacy.total_cents:
            extra["total_cents"] = legacy.total_cents
        if legacy.product_assigned:
            extra["product_assigned"] = True
            extra["fulfillment_state"] = FulfillmentState.COMPLETED
        order = repo.create(
            order_id=legacy.id or uuid.uuid4(),
            buyer_id=account.pk,
            lines=lines,
            payment_method=legacy.payment_method,
            transaction_id=legacy.transaction_id,
            created_by=IMPORT_ACTOR,
            status=status,
            **extra,
        )
        if legacy.created_at:
            OrderModel.objects.filter(pk=order.pk).update(created_at=legacy.created_at)
