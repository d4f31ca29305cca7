"""
MBEE
Blueprint registry.
"""

from mbee.blueprints.element_bp import element_bp
from mbee.blueprints.health_bp import health_bp

ALL_BLUEPRINTS = (element_bp, health_bp)
