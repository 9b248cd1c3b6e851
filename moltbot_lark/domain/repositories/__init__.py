# Repository Interfaces
from .message_sender import IMessageSender
from .model_client import IModelClient, ModelStream

__all__ = ["IMessageSender", "IModelClient", "ModelStream"]
