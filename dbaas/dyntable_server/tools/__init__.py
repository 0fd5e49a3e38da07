"""
Operator tools for DynTable.

- schema_cli: declare, list, show, drop and query tables of a tenant
"""
