# nodehealth/api/v1/__init__.py
from .api import api_router
