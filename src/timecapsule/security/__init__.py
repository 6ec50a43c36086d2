from .content_cipher import ContentCipher, SealedPayload

__all__ = ["ContentCipher", "SealedPayload"]
