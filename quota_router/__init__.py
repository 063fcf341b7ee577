"""
Quota Router.

Routes LLM requests across several providers and fails over when a
provider's sliding-window quota is exhausted.
"""

__version__ = "0.1.0"
