"""Task routing, confirmation window and credit allocation core.

All state transitions are status-guarded conditional updates committed in
short independent transactions (``UPDATE ... WHERE status = :expected`` and a
``rowcount`` check), so concurrent request handlers and the periodic sweep
never need a shared in-process lock. Offer expiry is derived from wall-clock
time on every read/write path; there are no timer threads to lose on restart.
"""
