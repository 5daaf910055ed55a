"""
AgentPay - payment-gated HTTP resources over the x402 protocol
"""

__version__ = "0.1.0"
