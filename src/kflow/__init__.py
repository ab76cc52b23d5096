"""kflow - Kubeflow training job submission with OIDC sessions."""

__version__ = "0.1.0"
