"""
State Machine Module for Conversation Flows
"""
from ppid_bot.state_machine.handlers import InboundMessage, MessageHandler
from ppid_bot.state_machine.session_store import SessionStore

__all__ = ["InboundMessage", "MessageHandler", "SessionStore"]
