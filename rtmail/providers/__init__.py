"""Inbound mail webhooks for Mailgun, SendGrid and SparkPost."""

from . import mailgun, sendgrid, sparkpost

__all__ = ["mailgun", "sendgrid", "sparkpost"]
