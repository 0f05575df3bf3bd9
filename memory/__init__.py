from .rolling_history import RollingHistory
from .session_store import SessionStore
from .storage import InMemoryStorage, Storage
from .training_corpus import TrainingCorpus

__all__ = ["InMemoryStorage", "RollingHistory", "SessionStore", "Storage", "TrainingCorpus"]
