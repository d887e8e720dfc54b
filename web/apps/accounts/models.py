import uuid
from django.db import models


class Account(models.Model):
    """Local record of a buyer known to the identity provider.

    The primary key is the identity provider's user id. ``products`` is the
    buyer's owned-products collection; it behaves as a set, so adding a
    product the buyer already owns is a no-op.
    """

    class Role(models.TextChoices):
        USER = "user"
        ADMIN = "admin"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    username = models.CharField(max_length=150, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    role = models.CharField(max_length=16, choices=Role.choices, default=Role.USER)
    products = models.ManyToManyField("catalog.Product", related_name="owners", blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "accounts"

    def __str__(self) -> str:
        return self.username or str(self.id)
