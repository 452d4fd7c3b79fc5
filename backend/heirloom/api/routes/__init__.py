# API routes
from heirloom.api.routes import health
from heirloom.api.routes import lifecycle
from heirloom.api.routes import heartbeat
from heirloom.api.routes import beneficiaries
from heirloom.api.routes import admin_compensation
from heirloom.api.routes import admin_vaults

__all__ = [
    "health",
    "lifecycle",
    "heartbeat",
    "beneficiaries",
    "admin_compensation",
    "admin_vaults",
]
