"""Web API Blueprints"""

from buildpkg.web.blueprints.builds_bp import builds_bp
from buildpkg.web.blueprints.packages_bp import packages_bp

__all__ = ["builds_bp", "packages_bp"]
