"""kubeverify — verify live Kubernetes resources against signed manifests."""

__version__ = "0.1.0"
