# Services package init
"""
Vitali Backend — Services Layer
=================================

What:  Business logic between routes (HTTP) and the state store (buckets).

Service Inventory:
    - MessageService: consultation message threads (consultation_messages bucket)

Services take the AppStore as an argument instead of importing a global, so
tests can hand them a fresh store.
"""
