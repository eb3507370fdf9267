"""Olmed Gateway - ERP integration gateway with an in-process job scheduler."""

__app_name__ = "olmed-gateway"
__version__ = "0.1.0"
