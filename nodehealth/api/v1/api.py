# nodehealth/api/v1/api.py
from fastapi import APIRouter
from nodehealth.api.v1.endpoints import admission, policies

api_router = APIRouter()

# Include routers from endpoint modules
api_router.include_router(admission.router, prefix="/admission", tags=["Admission"])
api_router.include_router(policies.router, prefix="/policies", tags=["Policies"])
