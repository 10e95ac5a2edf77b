"""
Pharmacy order lifecycle and payment orchestration service.

The package is organised the same way as the API it serves: ``models`` holds
database setup, ORM tables and Pydantic schemas, ``services`` holds the order
engine, payment, notification and prescription logic, and ``enterprise``
holds the audit trail and API-key role checks.
"""

__version__ = "0.1.0"
