"""Background workers."""
from .vote_credit_worker import VoteCreditMessage, VoteCreditWorker

__all__ = ["VoteCreditMessage", "VoteCreditWorker"]
