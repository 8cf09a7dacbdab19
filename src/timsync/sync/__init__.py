"""Site context, reconciliation and the sync pipeline.

Submodules are imported directly (``timsync.sync.pipeline`` etc.); the
templating layer depends on ``timsync.sync.context``, so this package
keeps no eager imports.
"""
