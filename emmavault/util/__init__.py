"""Emma Vault utilities."""

from emmavault.util.memory import KeyObfuscator, SecureMemory, SplitSecret
from emmavault.util.rate_limit import RateLimiter

__all__ = ["KeyObfuscator", "SecureMemory", "SplitSecret", "RateLimiter"]
