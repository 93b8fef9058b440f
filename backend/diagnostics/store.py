from django.db import DEFAULT_DB_ALIAS, transaction


class Store:
    """Handle on one relational store.

    Engines receive a ``Store`` instead of reaching for the global connection.
    ``atomic()`` groups statements all-or-nothing; rows read through
    ``locked()`` stay locked until the enclosing ``atomic()`` block ends, so two
    mutations of the same problem (or remote bucket) serialize instead of
    interleaving. On SQLite ``select_for_update`` is a no-op and the database
    lock already serializes writers.
    """

    def __init__(self, alias: str = DEFAULT_DB_ALIAS):
        self.alias = alias

    def atomic(self):
        return transaction.atomic(using=self.alias)

    def objects(self, model):
        return model._default_manager.using(self.alias)

    def locked(self, model):
        return self.objects(model).select_for_update()

    def __repr__(self) -> str:
        return f"Store(alias={self.alias!r})"
