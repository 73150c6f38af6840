"""ProposalHQ API: proposal generation, history, and Stripe-backed billing."""

__version__ = "0.4.0"
