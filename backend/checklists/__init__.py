from .app import FleetChecklistApp

__all__ = ["FleetChecklistApp"]
