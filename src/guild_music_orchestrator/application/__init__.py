"""
Application Layer

Use cases sitting between the command front-end and the infrastructure.

Structure:
- commands/: command ingress (Command, CommandDispatcher)
- queries/: read-side handlers (GetQueueQuery)
- services/: the playback orchestrator and the retry executor
- interfaces/: port interfaces implemented by infrastructure adapters
"""
