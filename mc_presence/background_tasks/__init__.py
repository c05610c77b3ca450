from .periodic import PeriodicTask

__all__ = ["PeriodicTask"]
