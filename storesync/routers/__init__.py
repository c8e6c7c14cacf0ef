"""
API routers package
"""

from storesync.routers.sync import router as sync_router
