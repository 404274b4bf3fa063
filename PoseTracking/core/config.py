"""
Shared helpers for algorithm configuration classes.

Every algorithm declares its defaults as UPPER_CASE class attributes on a
``<Name>Config`` class deriving from BaseConfig. Instances can be overridden
attribute by attribute without touching the class defaults. Option names are
case-insensitive; unknown names are logged and ignored.
"""

from typing import Any, Dict

from PoseTracking.logger import get_logger

logger = get_logger("core.config")


class BaseConfig:
    """Base class for UPPER_CASE configuration holders"""

    def __init__(self, **overrides):
        self.update(**overrides)

    def update(self, **overrides):
        """Apply keyword overrides, skipping names the config does not define"""
        for key, value in overrides.items():
            name = key.upper()
            if hasattr(self, name):
                setattr(self, name, value)
            else:
                logger.debug(f"{self.__class__.__name__}: ignoring unknown option '{key}'")

    def to_dict(self) -> Dict[str, Any]:
        """Effective configuration as a plain dict"""
        return {
            name: getattr(self, name)
            for name in dir(self)
            if name.isupper() and not name.startswith('_')
        }

    def __repr__(self) -> str:
        items = ', '.join(f"{k}={v!r}" for k, v in sorted(self.to_dict().items()))
        return f"{self.__class__.__name__}({items})"
