"""Traefik dynamic configuration from Proxmox VE guest labels.

Modules: models (API data), client (Proxmox API client),
configuration (router and service generation), provider (polling provider).
"""

__version__ = "0.1.0"