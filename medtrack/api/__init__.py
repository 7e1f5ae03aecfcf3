# API Package - Centralized imports
# Allows easy importing of all routers

from .auth import router as auth_router
from .users import router as users_router
from .locations import router as locations_router
from .doctors import router as doctors_router
from .products import router as products_router
from .visits import router as visits_router
from .samples import router as samples_router
from .orders import router as orders_router
from .dashboard import router as dashboard_router
from .access_control import enforce_access, get_current_principal

__all__ = [
    # Auth
    "auth_router",
    "enforce_access",
    "get_current_principal",

    # Routers
    "users_router",
    "locations_router",
    "doctors_router",
    "products_router",
    "visits_router",
    "samples_router",
    "orders_router",
    "dashboard_router",
]
