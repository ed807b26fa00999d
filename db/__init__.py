"""
db/ - Database Layer
====================
Connection pools, schema-name validation, the error taxonomy and the
managed-table initializer. Lowest layer: it depends only on config and
the models.
"""
