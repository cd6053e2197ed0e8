"""
pxclean - safe cleanup of unused Docker resources on Proxmox hosts.
"""

__version__ = "1.0.0"
