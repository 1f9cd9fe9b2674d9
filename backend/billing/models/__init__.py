from .tenancy import Organization, Store
from .settings import TemplatePreference, TemplateSettings
from .sources import Order, OrderLine, SubscriptionPlan, Subscription, SubscriptionPayment
from .documents import Document, DocumentLine, DocumentSequence, EmailRecipient
from .audit import AuditLogEntry, Notification

__all__ = [
    'Organization', 'Store',
    'TemplateSettings', 'TemplatePreference',
    'Order', 'OrderLine', 'SubscriptionPlan', 'Subscription', 'SubscriptionPayment',
    'Document', 'DocumentLine', 'DocumentSequence', 'EmailRecipient',
    'AuditLogEntry', 'Notification',
]
