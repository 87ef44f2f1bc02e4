"""
Callbacks into resources owned by other parts of the application (QR codes and similar).

Scheduling a deletion deactivates them; cancelling it reactivates them. Both calls
are best-effort: a failing hook is logged and never blocks the identity transition.
"""
import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class ResourceHook(ABC):

    @abstractmethod
    def deactivate(self, account_id: int) -> None:
        pass

    @abstractmethod
    def reactivate(self, account_id: int) -> None:
        pass


class NoopResourceHook(ResourceHook):

    def deactivate(self, account_id: int) -> None:
        logger.debug(f"[Hooks] No resources to deactivate for account {account_id}")

    def reactivate(self, account_id: int) -> None:
        logger.debug(f"[Hooks] No resources to reactivate for account {account_id}")


def run_hook(hook: ResourceHook, action: str, account_id: int) -> bool:
    """Invoke hook.<action>(account_id). Returns False if the hook raised."""
    try:
        getattr(hook, action)(account_id)
        return True
    except Exception as e:
        logger.warning(f"[Hooks] {action} failed for account {account_id}: {e}")
        return False
