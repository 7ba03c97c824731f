"""
Vitali Backend — FastAPI Dependencies
=======================================

What:  Hands the application's single AppStore to route handlers.
How:   The lifespan puts the store on `app.state.store`; `get_store` reads it
       back from the request. No module-level store exists.

Example usage in a route:
    @router.get("/patients/{patient_id}")
    async def get_patient(patient_id: str, store: AppStore = Depends(get_store)):
        return to_plain(store.get_bucket("patient_profiles")[patient_id])
"""

from fastapi import Request

from vitali.store import AppStore


def get_store(request: Request) -> AppStore:
    return request.app.state.store
