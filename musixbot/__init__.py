"""MusiXBot package.

Request/payment orchestration for the music bot: inbound posts are rate
limited and queued, payments are verified against the chain, and pending
work is checkpointed so it survives restarts.
"""

__all__: list[str] = []
