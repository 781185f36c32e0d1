"""VotePay: payment orchestration for pay-to-vote campaigns."""

__version__ = "0.1.0"
