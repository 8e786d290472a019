"""State stores.

- QueueStore: per-region queues and their lifecycle
- ConfirmationCoordinator: reopen-after-empty protocol
- TesterPool: round-robin reviewer selection
- TicketRegistry: live pairing sessions
- WaitlistRegistry: membership and cooldowns
"""

from testerqueue.store.confirmation import ConfirmationCoordinator
from testerqueue.store.queues import QueueStore
from testerqueue.store.testers import TesterPool
from testerqueue.store.tickets import TicketRegistry
from testerqueue.store.waitlist import WaitlistRegistry

__all__ = [
    "QueueStore",
    "ConfirmationCoordinator",
    "TesterPool",
    "TicketRegistry",
    "WaitlistRegistry",
]
