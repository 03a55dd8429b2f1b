from swapgraph.intents.service import IntentService

__all__ = ["IntentService"]
