"""External services: the chat-completions gateway and its usage ledger."""
