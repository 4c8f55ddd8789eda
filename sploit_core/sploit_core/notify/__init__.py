"""
Operator notifications: SMTP delivery, error reports and periodic status mail.
"""

from .notifier import ErrorReporter, LogNotifier, Notifier, SmtpNotifier

__all__ = ['ErrorReporter', 'LogNotifier', 'Notifier', 'SmtpNotifier']
