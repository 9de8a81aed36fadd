"""
Kcm provisions Kubernetes clusters and keeps their workloads in sync with a set of rendered manifests.
"""

__version__ = "0.1.0"
