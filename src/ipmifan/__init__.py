"""
ipmifan - temperature driven fan zone control for Supermicro IPMI boards
"""

import logging

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
