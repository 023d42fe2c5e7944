from db.models.account import ACCOUNT_STATUSES, Account
from db.models.inbound import InboundDefinition

__all__ = ["Account", "InboundDefinition", "ACCOUNT_STATUSES"]
