from django.db import models


class StoredEnvelope(models.Model):
    """Envelope document for one user, used by the database storage backend."""

    key = models.CharField(max_length=255, primary_key=True)
    document = models.JSONField(default=dict)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'vault_storedenvelope'

    def __str__(self):
        return f"StoredEnvelope {self.key}"
