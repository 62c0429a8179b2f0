"""hikup: keep local containers on their newest images.

Single-host agent that:
 - lists every container on the local Docker engine
 - selects containers through an include/exclude policy (hot-reloadable on SIGHUP)
 - pulls the image and recreates each selected container with its original spec

The recreate pipeline keeps the original around (renamed) until the
replacement is confirmed running, so a failed update can be rolled back.
"""

__version__ = "0.1.0"
