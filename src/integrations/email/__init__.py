from .mailer import EmailDeliveryError, HttpMailer

__all__ = ["EmailDeliveryError", "HttpMailer"]
