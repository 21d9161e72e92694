"""
rt-mail: inbound email relay from SES, Mailgun, SendGrid and SparkPost
into Request Tracker queues.
"""

__version__ = "0.3.0"
