"""
repositories/ - Data Access Layer
==================================
Each repository encapsulates the SQL for one concern: the administrative
schema catalog and the tenant users table. Repositories return domain
model objects and raise only TenantDbError subclasses.
"""
