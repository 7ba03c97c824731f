# Routes package init
"""
Vitali Backend — API Routes Package
=====================================

Route Inventory:
    - health.py:    GET  /health                      (service + store health)
    - messages.py:  GET  /api/messages/{patient_id}   (message thread)
                    POST /api/messages/{patient_id}   (append message)

Routes stay thin: they resolve the AppStore with Depends(get_store), call a
service, and shape the response. Bucket logic lives in services.
"""
