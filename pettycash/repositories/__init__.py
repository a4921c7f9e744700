"""
Repository Layer Package.

Data-access abstractions over the local SQLite store.  Every write also
lands in ``sync_queue`` for replication.  Services never touch
``db.sqlite`` directly.

Usage:
    from pettycash.repositories.transaction_repository import TransactionRepository
    from pettycash.repositories.transaction_query import TransactionQuery
"""
