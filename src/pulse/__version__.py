"""Version information for Linear Pulse.

Single source of truth for version number.
Follows PEP 440 and semantic versioning principles.
"""

__version__ = "1.4.0"
__version_info__ = tuple(int(part) for part in __version__.split("."))

# Version history:
# 1.4.0 - Versioned metrics snapshots, five-level pillar statuses
# 1.3.0 - Bounded-concurrency project processor, cancellation token
# 1.2.0 - Initiatives and initiative-linked project discovery
# 1.1.0 - Resumable checkpoints on rate limit
# 1.0.0 - Initial release (started issues, active projects, engineer WIP)
