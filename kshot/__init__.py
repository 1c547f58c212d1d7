"""
k-shot device trust

Identifies the caller of every privileged operation from a signed,
registry-checked credential file on the device, with no interactive login.

Example:
    >>> from kshot import Config, TrustContext
    >>> with TrustContext.open(Config.from_env()) as ctx:
    ...     identity_id = ctx.gate.resolve()
"""

__version__ = "1.0.0"

from .config import Config
from .context import TrustContext

__all__ = [
    "__version__",
    "Config",
    "TrustContext",
]
