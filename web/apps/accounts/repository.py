"""Account lookups shared by checkout, the legacy importer and the buyer library."""

import uuid

from apps.catalog.models import StockItem

from .models import Account


def ensure_account(user_id: uuid.UUID, username: str = "", role: str = Account.Role.USER) -> Account:
    """Return the local account for a trusted identity, creating it on first sight."""
    account, created = Account.objects.get_or_create(
        id=user_id, defaults={"username": username, "role": role}
    )
    if not created and username and account.username != username:
        Account.objects.filter(pk=account.pk).update(username=username)
        account.username = username
    return account


def owned_product_ids(user_id) -> set:
    return set(Account.products.through.objects.filter(account_id=user_id).values_list("product_id", flat=True))


def delivered_items(user_id):
    """Stock items assigned to a buyer, most recent first."""
    return (
        StockItem.objects.filter(assigned_to_id=user_id)
        .select_related("product", "variant")
        .order_by("-assigned_at", "code")
    )
