"""Artifact store access, bundle packaging and the deployment watcher."""
