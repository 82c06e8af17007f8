"""Conversation feature package: DTOs, controller and router.

Read-only views over the conversation registry and message store, plus a
delete that removes a conversation together with its turns.
"""
