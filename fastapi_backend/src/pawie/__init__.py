"""
Pawie backend package.

Modules:
- config: environment settings and logging setup
- db: PostgreSQL connection pooling + query helpers
- store: transactional data access used by the business services
- pricing, inventory, orders, autoships: commerce rules
- catalog, variants, discounts, dashboard: catalog and admin helpers
- auth_utils: password hashing and JWT auth helpers
- schemas: Pydantic models for the REST API
- main: the FastAPI application
"""
