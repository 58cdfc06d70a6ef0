"""Shared library registry and the ``libs`` field check."""
import logging
from typing import Dict, List, Optional

from config import PUBLIC_BASE_URL
from errors import InvalidLibrary

logger = logging.getLogger(__name__)

LIBS_PATH = "/libs/"

DEFAULT_LIBRARIES: Dict[str, Dict[str, str]] = {
    "three": {"name": "three.js", "version": "0.160.0", "dimensions": "3d"},
    "babylon": {"name": "Babylon.js", "version": "6.38.0", "dimensions": "3d"},
    "cannon": {"name": "cannon-es", "version": "0.20.0", "dimensions": "3d"},
    "phaser": {"name": "Phaser", "version": "3.70.0", "dimensions": "2d"},
    "pixi": {"name": "PixiJS", "version": "7.3.2", "dimensions": "2d"},
    "matter": {"name": "Matter.js", "version": "0.19.0", "dimensions": "2d"},
    "p5": {"name": "p5.js", "version": "1.9.0", "dimensions": "2d"},
    "howler": {"name": "howler.js", "version": "2.2.4", "dimensions": "any"},
    "tone": {"name": "Tone.js", "version": "14.7.77", "dimensions": "any"},
    "gsap": {"name": "GSAP", "version": "3.12.4", "dimensions": "any"},
}


class LibraryRegistry:
    """Known shared libraries, served by the platform under /libs/<key>@<version>.js."""

    def __init__(self, libraries: Optional[Dict[str, Dict[str, str]]] = None, base_url: str = PUBLIC_BASE_URL):
        self._libraries = dict(libraries if libraries is not None else DEFAULT_LIBRARIES)
        self._base_url = base_url.rstrip("/")

    def list_keys(self) -> List[str]:
        return sorted(self._libraries)

    def url_for(self, key: str) -> str:
        lib = self._libraries[key]
        return f"{self._base_url}{LIBS_PATH}{key}@{lib['version']}.js"

    def describe(self) -> List[Dict[str, str]]:
        return [dict(self._libraries[key], key=key, url=self.url_for(key)) for key in self.list_keys()]


def validate_libraries(libs: List[str], registry: LibraryRegistry) -> List[str]:
    if not libs:
        return []
    available = registry.list_keys()
    unknown = [key for key in libs if key not in available]
    if unknown:
        raise InvalidLibrary(
            f"Unknown libraries: {', '.join(unknown)}",
            details={"unknown_libs": unknown, "available_libs": available},
        )
    logger.debug(f"Libraries validated: {libs}")
    return libs
