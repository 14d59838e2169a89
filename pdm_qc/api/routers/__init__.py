"""
pdm_qc/api/routers package marker.
"""

from pdm_qc.api.routers.quality_control import router as quality_control_router

__all__ = [
    "quality_control_router",
]
