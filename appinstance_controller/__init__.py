"""Kubernetes controller that keeps AppInstance Pods at their declared size"""

__version__ = "0.1.0"
